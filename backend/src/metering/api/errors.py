"""Structured error bodies shared by the exception handlers and routes."""
from datetime import datetime
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from metering.exceptions import MeteringError
from metering.middleware.logging import new_request_id
from metering.schemas.error import REMEDIATION_HINTS


def request_id_for(request: Request) -> str:
    """Request id bound by the logging middleware, or a fresh one."""
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or new_request_id()


def error_content(
    request: Request,
    error: str,
    message: str,
    details: Optional[list[dict[str, Any]]] = None,
    remediation: Optional[str] = None,
) -> dict[str, Any]:
    """Body of the standard error response."""
    return {
        "error": error,
        "message": message,
        "details": details,
        "remediation": remediation,
        "request_id": request_id_for(request),
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


def metering_error_response(request: Request, exc: MeteringError, **extra: Any) -> JSONResponse:
    """
    Render a domain error.

    Args:
        request: Current request
        exc: Domain error
        extra: Additional top-level body fields (e.g. ``can_use=False``)
    """
    detail = {"code": exc.code, "message": exc.message}
    if "field" in exc.details:
        detail["field"] = exc.details["field"]
        detail["value"] = exc.details.get("value")

    content = error_content(
        request,
        error=type(exc).__name__,
        message=exc.message,
        details=[detail],
        remediation=REMEDIATION_HINTS.get(exc.code),
    )
    content.update(extra)

    headers = {"Retry-After": "30"} if exc.status_code == 503 else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)
