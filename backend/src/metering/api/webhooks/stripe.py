"""Stripe webhook ingress.

Phase 1 only: verify the signature, persist the event to the inbox and hand
its id to the dispatcher. Reconciliation happens outside the request.
"""
import structlog
from fastapi import APIRouter, Depends, Request
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.exceptions import MeteringError
from metering.api.deps import get_db, get_dispatcher, get_stripe_adapter
from metering.schemas.error import ErrorResponse
from metering.services.billing_event_service import BillingEventInbox
from metering.workers.dispatcher import EventDispatcher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["Webhooks"])


@router.post("", responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> dict[str, bool]:
    """
    Receive a Stripe event.

    Returns 400 when the signature is missing or invalid and 500 when the
    event cannot be stored, so the processor redelivers it. Once the event
    is stored it is acknowledged even if dispatch fails; the sweeper picks
    it up.
    """
    body = await request.body()
    event = stripe_adapter.construct_webhook_event(body, request.headers.get("stripe-signature"))

    try:
        should_dispatch = await BillingEventInbox(db).record_received(event)
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("billing_event_store_failed", event_id=event["id"], error=str(e))
        raise MeteringError("Failed to store webhook event", details={"event_id": event["id"]}) from e

    if should_dispatch:
        try:
            await dispatcher.dispatch(event["id"])
        except (RedisError, OSError) as e:
            logger.error("billing_event_dispatch_failed", event_id=event["id"], error=str(e))

    logger.info("stripe_webhook_acknowledged", event_id=event["id"], event_type=event["type"])
    return {"received": True}
