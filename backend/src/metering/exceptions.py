"""Domain error taxonomy.

Each error carries the HTTP status and machine-readable code used by the
API exception handlers in ``metering.main``.
"""
from typing import Any

from metering.schemas.error import ErrorCode


class MeteringError(Exception):
    """Base class for all metering errors."""

    status_code = 500
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code


class ValidationError(MeteringError):
    """Missing or malformed input. Never retried automatically."""

    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(MeteringError):
    """Unknown user, plan, customer or subscription reference."""

    status_code = 404
    code = ErrorCode.NOT_FOUND


class ConflictError(MeteringError):
    """Concurrent write contention that the store could not resolve."""

    status_code = 409
    code = ErrorCode.CONFLICT


class UpstreamAuthenticityError(MeteringError):
    """Inbound webhook failed signature verification."""

    status_code = 400
    code = ErrorCode.INVALID_SIGNATURE


class UpstreamUnavailableError(MeteringError):
    """Billing processor unreachable or rejected the call."""

    status_code = 502
    code = ErrorCode.STRIPE_API_ERROR


class InternalPersistenceError(MeteringError):
    """Backing store unreachable or failed mid-operation."""

    status_code = 503
    code = ErrorCode.DATABASE_ERROR
