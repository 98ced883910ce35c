"""Hosted checkout and customer portal endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.api.deps import current_user_id, get_current_user, get_db, get_stripe_adapter
from metering.schemas.checkout import CheckoutSessionCreate, RedirectURL
from metering.schemas.error import ErrorResponse
from metering.services.checkout_service import CheckoutService

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post(
    "/session",
    response_model=RedirectURL,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def create_checkout_session(
    body: CheckoutSessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> RedirectURL:
    """Start a subscription checkout; redirect the browser to the returned URL."""
    service = CheckoutService(db, stripe_adapter)
    url = await service.create_checkout_session(
        current_user_id(current_user), current_user.get("email"), body.plan_id
    )
    await db.commit()
    return RedirectURL(url=url)


@router.post(
    "/portal",
    response_model=RedirectURL,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def create_portal_session(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> RedirectURL:
    """Open the customer portal to manage payment methods or cancel."""
    url = await CheckoutService(db, stripe_adapter).create_portal_session(current_user_id(current_user))
    return RedirectURL(url=url)
