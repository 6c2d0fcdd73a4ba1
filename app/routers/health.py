"""
Vocab Tutor — Health Router
Liveness, database reachability, and an LLM provider probe.
"""

import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.database import ping as db_ping, run_db
from app.routers.deps import get_llm

router = APIRouter(tags=["health"])


# Both /health and /healthz (platform probes use the latter)
@router.get("/health")
@router.get("/healthz")
async def health(request: Request):
    started_at = getattr(request.app.state, "started_at", time.time())
    return {
        "status": "ok",
        "provider": request.app.state.llm.provider_name,
        "uptime_sec": max(0, int(time.time() - started_at)),
    }


@router.get("/health/db")
async def health_db(request: Request):
    ok = await run_db(db_ping, request.app.state.session_factory)
    return {"ok": ok}


@router.get("/v1/llm/ping")
async def llm_ping(llm=Depends(get_llm)):
    """200 when the provider is reachable and ready, 503 otherwise."""
    result = await llm.ping()
    return JSONResponse(status_code=200 if result.ok else 503, content=result.to_dict())
