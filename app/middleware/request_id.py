import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("vocab_tutor.http")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Accepts or generates X-Request-Id, keeps it on request.state, and echoes it back.

    Logs one line per request with method, path, status and latency.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        req_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = req_id

        response = await call_next(request)
        response.headers["X-Request-Id"] = req_id

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"{req_id} {request.method} {request.url.path} -> {response.status_code} ({latency_ms}ms)")
        return response
