"""Subscription API endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import current_user_id, get_current_user, get_db
from metering.exceptions import NotFoundError
from metering.schemas.error import ErrorCode
from metering.schemas.subscription import SubscriptionWithPlan
from metering.services.subscription_service import SubscriptionLedger

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.get("/me", response_model=SubscriptionWithPlan)
async def get_my_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """
    The caller's authoritative subscription.

    404 means the caller is on the default plan.
    """
    subscription = await SubscriptionLedger(db).get_active_subscription(current_user_id(current_user))
    if subscription is None:
        raise NotFoundError("No active subscription", code=ErrorCode.SUBSCRIPTION_NOT_FOUND)
    return SubscriptionWithPlan.model_validate(subscription)
