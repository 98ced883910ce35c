"""Pydantic schemas for Plan model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metering.features import Feature, validate_feature_map


class PlanBase(BaseModel):
    """Base plan schema with common fields."""

    name: str = Field(..., min_length=1, max_length=255, description="Plan name")
    price_monthly: int = Field(..., ge=0, description="Monthly price in cents")
    currency: str = Field(default="BRL", min_length=3, max_length=3, description="ISO 4217 currency code")
    stripe_price_id: str | None = Field(default=None, description="Processor price identifier")
    features: dict[str, int] = Field(
        default_factory=dict,
        description="Monthly limit per feature; -1 means unlimited, absent means 0",
    )
    active: bool = Field(default=True, description="Whether plan is offered to new subscribers")

    @field_validator("features", mode="before")
    @classmethod
    def validate_features(cls, v):
        """Reject unknown feature names and limits below -1."""
        if not isinstance(v, dict):
            raise ValueError("features must be an object of feature -> limit")
        return validate_feature_map(v)


class PlanCreate(PlanBase):
    """Schema for creating a new plan."""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "name": "Básico",
                    "price_monthly": 4990,
                    "currency": "BRL",
                    "stripe_price_id": "price_basic_monthly",
                    "features": {"generations": 50, "diagnostics": 10, "funnel_analysis": 0},
                },
                {
                    "name": "Premium",
                    "price_monthly": 14990,
                    "currency": "BRL",
                    "stripe_price_id": "price_premium_monthly",
                    "features": {"generations": -1, "diagnostics": -1, "funnel_analysis": -1},
                },
            ]
        }
    )


class PlanUpdate(BaseModel):
    """Schema for updating a plan (all fields optional)."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    price_monthly: int | None = Field(default=None, ge=0)
    stripe_price_id: str | None = None
    features: dict[str, int] | None = None
    active: bool | None = None

    @field_validator("features", mode="before")
    @classmethod
    def validate_features(cls, v):
        """Reject unknown feature names and limits below -1."""
        if v is None:
            return v
        if not isinstance(v, dict):
            raise ValueError("features must be an object of feature -> limit")
        return validate_feature_map(v)


class Plan(PlanBase):
    """Schema for returning plan data."""

    id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("features", mode="before")
    @classmethod
    def validate_features(cls, v):
        # Stored maps are trusted; keys dropped from the Feature enum are ignored
        return {k: int(limit) for k, limit in (v or {}).items() if Feature.parse(k) is not None}


class PlanList(BaseModel):
    """Schema for plan list."""

    items: list[Plan]
    total: int
