"""Pydantic schemas for Subscription model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from metering.models.subscription import SubscriptionStatus
from metering.schemas.plan import Plan


class Subscription(BaseModel):
    """Schema for returning subscription data."""

    id: UUID
    user_id: UUID
    plan_id: UUID
    status: SubscriptionStatus
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None
    external_subscription_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionWithPlan(Subscription):
    """Subscription with its plan embedded."""

    plan: Plan
