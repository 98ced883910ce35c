"""Schemas for administrative entitlement overrides."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metering.features import Feature


class OverrideSet(BaseModel):
    """Set a per-user limit that replaces the plan limit."""

    user_id: UUID
    feature: str
    limit_value: int = Field(..., ge=-1, description="Replacement limit; -1 means unlimited")
    reason: str | None = Field(default=None, max_length=500)

    @field_validator("feature")
    @classmethod
    def validate_feature(cls, v: str) -> str:
        """Only known features can be overridden."""
        if Feature.parse(v) is None:
            raise ValueError(f"Unknown feature '{v}'")
        return v


class Override(BaseModel):
    """Schema for returning an override."""

    id: UUID
    user_id: UUID
    feature: str
    limit_value: int
    reason: str | None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
