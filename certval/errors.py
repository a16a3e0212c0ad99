"""
Application Exceptions.

Every failure of the decision workflow is one of these. Each carries the HTTP
status it maps to and optional diagnostic fields that are merged into the
JSON error body:

    {"error": "<message>", "code": "<code>", **details}
"""

from enum import Enum
from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    INTERNAL_ERROR = "internal_error"

    # Reviewer input (400)
    VALIDATION_ERROR = "validation_error"
    EMPTY_CODES = "empty_codes"
    UNKNOWN_CODE = "unknown_code"
    MISSING_JUSTIFICATION = "missing_justification"
    CALIBRATION_ID_NOT_FOUND = "calibration_id_not_found"

    # Auth / lookup
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"

    # Decision state
    ALREADY_DECIDED = "already_decided"
    PERSISTENCE_ERROR = "persistence_error"

    # Phoenix
    UPSTREAM_BAD_REQUEST = "upstream_bad_request"
    UPSTREAM_CONFLICT = "upstream_conflict"
    UPSTREAM_AUTH_ERROR = "upstream_auth_error"
    UPSTREAM_NOT_FOUND = "upstream_not_found"
    UPSTREAM_SERVER_ERROR = "upstream_server_error"
    UPSTREAM_ERROR = "upstream_error"


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class CertValError(Exception):
    """Base exception for the validation service."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_body(self) -> dict:
        return {"error": self.message, "code": self.code.value, **self.details}


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationInputError(CertValError):
    """Bad or missing reviewer input. Never retried."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=400, details=details)


class IdentifierNotFound(CertValError):
    def __init__(self, cert_no: str):
        super().__init__(
            f"CalibrationId not found for certificate {cert_no}",
            code=ErrorCode.CALIBRATION_ID_NOT_FOUND,
            status_code=400,
            details={"cert_no": cert_no},
        )


class AuthenticationRequired(CertValError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code=ErrorCode.UNAUTHORIZED, status_code=401)


class RecordNotFound(CertValError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.NOT_FOUND, status_code=404, details=details)


class AlreadyDecided(CertValError):
    """A ValidationRecord already exists for the certificate."""

    def __init__(self, cert_no: str, existing_status: Optional[str] = None):
        super().__init__(
            "This certificate has already been validated",
            code=ErrorCode.ALREADY_DECIDED,
            status_code=409,
            details={"cert_no": cert_no, "existing_status": existing_status},
        )


class PersistenceError(CertValError):
    """Local store failure, possibly after Phoenix already accepted the decision."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            code=ErrorCode.PERSISTENCE_ERROR,
            status_code=500,
            details=details,
        )


class UpstreamError(CertValError):
    """Phoenix rejected or failed the call. Defaults to 502."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UPSTREAM_ERROR,
        status_code: int = 502,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class UpstreamBadRequest(UpstreamError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Phoenix rejected the request: already processed or data issue",
            code=ErrorCode.UPSTREAM_BAD_REQUEST,
            status_code=400,
            details=details,
        )


class UpstreamConflict(UpstreamError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Phoenix rejected the request: already processed",
            code=ErrorCode.UPSTREAM_CONFLICT,
            status_code=400,
            details=details,
        )


class UpstreamAuthError(UpstreamError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Phoenix authentication failed",
            code=ErrorCode.UPSTREAM_AUTH_ERROR,
            status_code=401,
            details=details,
        )


class UpstreamNotFound(UpstreamError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "CalibrationId invalid: Phoenix could not find the calibration",
            code=ErrorCode.UPSTREAM_NOT_FOUND,
            status_code=404,
            details=details,
        )


class UpstreamServerError(UpstreamError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Phoenix server error",
            code=ErrorCode.UPSTREAM_SERVER_ERROR,
            status_code=502,
            details=details,
        )


class NotificationError(CertValError):
    """Webhook delivery failure. Logged by the dispatcher, never surfaced."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.INTERNAL_ERROR, status_code=500)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def certval_exception_handler(request: Request, exc: CertValError) -> JSONResponse:
    """Render CertValError as {"error", "code", **details}."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "certval_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=getattr(request.state, "request_id", None),
        details=exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def register_exception_handlers(app) -> None:
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(CertValError, certval_exception_handler)
