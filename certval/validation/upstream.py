"""Translate Phoenix failures into the service's error taxonomy."""

import re
from typing import Optional

from certval.errors import (
    UpstreamAuthError,
    UpstreamBadRequest,
    UpstreamConflict,
    UpstreamError,
    UpstreamNotFound,
    UpstreamServerError,
)
from certval.services.phoenix_client import PhoenixError

_HTTP_STATUS = re.compile(r"\(HTTP (\d{3})\)")


def upstream_status(exc: Exception) -> Optional[int]:
    """HTTP status of a failed Phoenix call, from the error or its message."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    match = _HTTP_STATUS.search(str(exc))
    return int(match.group(1)) if match else None


def map_phoenix_error(exc: Exception, calibration_id: Optional[str] = None) -> UpstreamError:
    """
    400 -> UpstreamBadRequest (400)   401 -> UpstreamAuthError (401)
    404 -> UpstreamNotFound (404)     409 -> UpstreamConflict (400)
    500 -> UpstreamServerError (502)
    anything else -> 502 with the raw message attached.
    """
    message = exc.message if isinstance(exc, PhoenixError) else str(exc)
    status = upstream_status(exc)
    details = {"details": message, "upstream_status": status}
    if calibration_id:
        details["CalibrationId"] = calibration_id

    if status == 400:
        return UpstreamBadRequest(details)
    if status == 401:
        return UpstreamAuthError(details)
    if status == 404:
        return UpstreamNotFound(details)
    if status == 409:
        return UpstreamConflict(details)
    if status == 500:
        return UpstreamServerError(details)
    return UpstreamError("Phoenix call failed", details=details)
