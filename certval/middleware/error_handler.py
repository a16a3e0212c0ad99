"""
Global Error Handler Middleware.

CertValError is rendered by the registered exception handler. Anything else
that escapes a route ends up here and is returned as a generic 500 with an
error_id for correlation with server logs. Stack traces, SQL and Phoenix
responses never reach the client.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from certval.config import settings

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Innermost of the application middleware, directly around the routes.

    Unhandled errors become the generic 500 here, so RequestContextMiddleware
    still stamps X-Request-ID on it and logs the request.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                traceback=traceback.format_exc(),
            )

            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "code": "internal_error",
                "error_id": error_id,
            }
            if settings.debug:
                body["debug_hint"] = type(exc).__name__

            return JSONResponse(status_code=500, content=body)
