"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    This provides consistent error responses across the API with:
    - Machine-readable error codes
    - Human-readable messages
    - Remediation hints
    - Request tracing information
    """

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFoundError')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(
        default=None, description="Detailed error information (for validation errors)"
    )
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "ValidationError",
                "message": "Unknown feature 'video_generation'",
                "details": [
                    {
                        "code": "unknown_feature",
                        "message": "Feature must be one of: generations, diagnostics, funnel_analysis",
                        "field": "feature",
                        "value": "video_generation",
                    }
                ],
                "remediation": "Use one of the documented feature names",
                "request_id": "req_1234567890ab",
                "timestamp": "2026-01-15T10:30:00Z",
            }
        }
    )


class EntitlementErrorResponse(ErrorResponse):
    """Error body for entitlement checks; always denies use."""

    can_use: bool = Field(default=False, description="Always false when the check could not be completed")


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_FEATURE = "unknown_feature"
    INVALID_FEATURE_LIMIT = "invalid_feature_limit"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_UUID = "invalid_uuid"
    INVALID_ENUM_VALUE = "invalid_enum_value"
    PLAN_NOT_PURCHASABLE = "plan_not_purchasable"

    # Webhook authenticity (400)
    INVALID_SIGNATURE = "invalid_signature"

    # Not found errors (404)
    NOT_FOUND = "not_found"
    PLAN_NOT_FOUND = "plan_not_found"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    CUSTOMER_NOT_FOUND = "customer_not_found"

    # Conflict (409)
    CONFLICT = "conflict"
    DUPLICATE_RESOURCE = "duplicate_resource"

    # Authorization errors (401/403)
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"

    # External service errors (502, 503)
    STRIPE_API_ERROR = "stripe_api_error"
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.UNKNOWN_FEATURE: "Use one of: generations, diagnostics, funnel_analysis",
    ErrorCode.INVALID_FEATURE_LIMIT: "Limits are non-negative integers, or -1 for unlimited",
    ErrorCode.INVALID_SIGNATURE: "Verify the webhook signing secret configured for this endpoint",
    ErrorCode.PLAN_NOT_FOUND: "Verify the plan ID is correct and the plan is active",
    ErrorCode.PLAN_NOT_PURCHASABLE: "The plan has no processor price attached; contact support",
    ErrorCode.CUSTOMER_NOT_FOUND: "Subscribe to a plan before opening the customer portal",
    ErrorCode.STRIPE_API_ERROR: "Payment processing is temporarily unavailable. Please try again later.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
