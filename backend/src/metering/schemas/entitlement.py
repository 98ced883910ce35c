"""Schemas for entitlement checks."""
from pydantic import BaseModel, Field


class EntitlementCheckRequest(BaseModel):
    """Request to check whether the caller may use a feature."""

    feature: str = Field(..., min_length=1, description="Feature name, e.g. 'generations'")


class EntitlementDecision(BaseModel):
    """
    Result of an entitlement check.

    ``limit_value`` is -1 for unlimited features.
    """

    feature: str | None = Field(default=None, description="Feature that was checked")
    can_use: bool = Field(..., description="Whether one more use is allowed")
    current_usage: int = Field(default=0, ge=0, description="Uses consumed in the current period")
    limit_value: int = Field(default=0, ge=-1, description="Period limit; -1 means unlimited")


class EntitlementSummary(BaseModel):
    """Decisions for every known feature."""

    items: list[EntitlementDecision]
