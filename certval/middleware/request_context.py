"""
Request Context Middleware.

- request_id read from X-Request-ID or generated, echoed back in the response
- request_id, method and path bound into structlog contextvars so every log
  line of the request (including the coordinator's decision events) carries them
- X-Response-Time header and a request_completed log line
"""

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        logger.info(
            "request_completed",
            status=response.status_code,
            elapsed_ms=elapsed_ms,
            reviewer=getattr(request.state, "reviewer", None),
        )
        return response
