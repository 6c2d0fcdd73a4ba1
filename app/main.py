"""
Vocab Tutor — Main Application
FastAPI app. Builds the services, mounts routers, CORS, error envelope.
Database initialization and the maintenance loop start in the lifespan.

create_app() takes optional overrides (session factory, LLM, rate limiter,
teacher token) so tests can run the full HTTP stack against their own
database without touching module globals.
"""

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from app.config import CORS_ORIGINS, LOG_LEVEL, IDEMPOTENCY_CLEANUP_ENABLED, TEACHER_TOKEN
from app.database import init_db, SessionLocal
from app.errors import TutorError, ValidationError, InternalError
from app.middleware.request_id import RequestIdMiddleware
from app.routers import assignments, health, sessions
from app.services.assignments import AssignmentService
from app.services.auth import TeacherAuth
from app.services.ingest import MessageIngestion
from app.services.maintenance import MaintenanceRunner, maintenance_loop
from app.services.rate_limiter import RateLimiter
from app.services.sessions import SessionService
from app.tutor.llm import TutorLLM, build_llm

logger = logging.getLogger("vocab_tutor")

VERSION = "1.0.0"


def create_app(
    session_factory: Optional[sessionmaker] = None,
    llm: Optional[TutorLLM] = None,
    rate_limiter: Optional[RateLimiter] = None,
    teacher_token: Optional[str] = None,
    maintenance_enabled: bool = IDEMPOTENCY_CLEANUP_ENABLED,
) -> FastAPI:

    # ─── Lifespan (startup/shutdown) ─────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: init DB, build services, start maintenance. Shutdown: cleanup."""
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL, logging.INFO),
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )

        factory = session_factory or SessionLocal
        logger.info("Initializing database...")
        init_db(factory.kw["bind"])

        tutor_llm = llm or build_llm()
        limiter = rate_limiter or RateLimiter()
        auth = TeacherAuth(TEACHER_TOKEN if teacher_token is None else teacher_token)

        app.state.started_at = time.time()
        app.state.session_factory = factory
        app.state.llm = tutor_llm
        app.state.assignments = AssignmentService(factory, limiter, auth)
        app.state.sessions = SessionService(factory, tutor_llm, limiter)
        app.state.ingestion = MessageIngestion(factory, tutor_llm, limiter)

        task = None
        if maintenance_enabled:
            task = asyncio.create_task(maintenance_loop(MaintenanceRunner(factory)))
            logger.info("Maintenance loop scheduled")

        logger.info(f"Vocab Tutor {VERSION} ready (LLM: {tutor_llm.provider_name})")
        yield

        logger.info("Shutting down")
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if llm is None:
            await tutor_llm.aclose()

    # ─── App ─────────────────────────────────────────────────────────────────

    app = FastAPI(
        title="Vocab Tutor",
        description="Vocabulary practice chat with an AI tutor",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    # ─── Error Envelope ──────────────────────────────────────────────────────

    @app.exception_handler(TutorError)
    async def tutor_error_handler(request: Request, exc: TutorError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message} {exc.details}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        err = ValidationError(details={"errors": errors})
        return JSONResponse(status_code=err.status_code, content=err.to_envelope())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        err = InternalError()
        return JSONResponse(status_code=err.status_code, content=err.to_envelope())

    # Mount routers
    app.include_router(health.router)
    app.include_router(assignments.router)
    app.include_router(sessions.router)

    return app


app = create_app()
