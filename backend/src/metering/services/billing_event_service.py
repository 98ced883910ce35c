"""Durable inbox for verified billing events.

Phase 1 (webhook request) stores the event and hands its id to a dispatcher.
Phase 2 (detached) claims the row, runs the reconciler and records the
outcome. A claim is a conditional status update, so two workers can never
process the same event at once.
"""
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.config import settings
from metering.database import Database, dialect_insert
from metering.metrics import billing_events_received_total, billing_events_total
from metering.models.billing_event import FINAL_STATUSES, BillingEvent, BillingEventStatus
from metering.services.reconciler_service import ReconcileOutcome, WebhookReconciler, from_unix
from metering.tracing import get_tracer
from metering.utils.audit import record_error

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

billing_events = BillingEvent.__table__

CLAIMABLE_STATUSES = (BillingEventStatus.RECEIVED, BillingEventStatus.FAILED)


class BillingEventInbox:
    """Service layer for the billing event inbox."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, event_id: str) -> Optional[BillingEvent]:
        """Get inbox row by processor event id."""
        result = await self.db.execute(select(BillingEvent).where(BillingEvent.event_id == event_id))
        return result.scalar_one_or_none()

    async def record_received(self, event: dict[str, Any]) -> bool:
        """
        Store a verified event.

        Args:
            event: Stripe event as a plain dict

        Returns:
            True if the event should be dispatched: it is new, or an earlier
            delivery has not finished yet
        """
        now = datetime.utcnow()
        inserted = await self.db.execute(
            dialect_insert(self.db, billing_events)
            .values(
                id=uuid4(),
                event_id=event["id"],
                event_type=event["type"],
                payload=event,
                processor_created_at=from_unix(event["created"]),
                status=BillingEventStatus.RECEIVED,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(billing_events.c.id)
        )
        if inserted.scalar_one_or_none() is not None:
            billing_events_received_total.labels(event_type=event["type"], duplicate="false").inc()
            logger.info("billing_event_received", event_id=event["id"], event_type=event["type"])
            return True

        billing_events_received_total.labels(event_type=event["type"], duplicate="true").inc()
        existing = await self.get(event["id"])
        redispatch = existing.status in CLAIMABLE_STATUSES and existing.attempts < settings.billing_event_max_attempts
        logger.info(
            "billing_event_redelivered",
            event_id=event["id"],
            status=existing.status.value,
            redispatch=redispatch,
        )
        return redispatch

    async def claim(self, event_id: str) -> Optional[BillingEvent]:
        """
        Move an event to ``processing`` if it is waiting and has attempts left.

        Returns:
            The claimed row, or None if another worker has it or it is finished
        """
        result = await self.db.execute(
            update(billing_events)
            .where(
                billing_events.c.event_id == event_id,
                billing_events.c.status.in_(CLAIMABLE_STATUSES),
                billing_events.c.attempts < settings.billing_event_max_attempts,
            )
            .values(
                status=BillingEventStatus.PROCESSING,
                attempts=billing_events.c.attempts + 1,
                updated_at=datetime.utcnow(),
            )
        )
        if result.rowcount == 0:
            return None
        return await self.get(event_id)

    async def mark(self, event_id: str, status: BillingEventStatus, error: Optional[str] = None) -> None:
        """Record the outcome of a processing attempt."""
        now = datetime.utcnow()
        values: dict[str, Any] = {"status": status, "last_error": error, "updated_at": now}
        if status in FINAL_STATUSES:
            values["processed_at"] = now
        await self.db.execute(update(billing_events).where(billing_events.c.event_id == event_id).values(**values))

    async def requeue_stale(self, now: Optional[datetime] = None) -> list[str]:
        """
        Find events that need another attempt.

        Rows stuck in ``processing`` longer than the stale threshold are
        treated as crashed and moved to ``failed``. Then every
        ``received``/``failed`` row older than the threshold with attempts
        left is returned for dispatch.

        Args:
            now: Clock override

        Returns:
            Processor event ids to dispatch
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=settings.billing_event_stale_after_minutes)

        timed_out = await self.db.execute(
            update(billing_events)
            .where(
                billing_events.c.status == BillingEventStatus.PROCESSING,
                billing_events.c.updated_at < cutoff,
            )
            # updated_at is kept so the row is picked up by the select below
            .values(
                status=BillingEventStatus.FAILED,
                last_error="processing timed out",
                updated_at=billing_events.c.updated_at,
            )
        )
        if timed_out.rowcount:
            logger.warning("billing_events_processing_timed_out", count=timed_out.rowcount)

        result = await self.db.execute(
            select(BillingEvent.event_id)
            .where(
                BillingEvent.status.in_(CLAIMABLE_STATUSES),
                BillingEvent.attempts < settings.billing_event_max_attempts,
                BillingEvent.updated_at < cutoff,
            )
            .order_by(BillingEvent.processor_created_at)
        )
        return list(result.scalars().all())


async def process_billing_event(database: Database, stripe_adapter: StripeAdapter, event_id: str) -> Optional[str]:
    """
    Process one inbox event end to end.

    Never raises: failures are written to ``error_logs`` and the row is
    marked ``failed`` for the sweeper to retry.

    Args:
        database: Database handle
        stripe_adapter: Stripe client used for snapshot fetches
        event_id: Processor event id

    Returns:
        Final inbox status value, or None if the event could not be claimed
    """
    log = logger.bind(event_id=event_id)
    event_type = "unknown"

    try:
        async with database.session() as db:
            claimed = await BillingEventInbox(db).claim(event_id)
            if claimed is None:
                log.info("billing_event_not_claimable")
                return None
            event_type, payload, attempts = claimed.event_type, claimed.payload, claimed.attempts

        with tracer.start_as_current_span(
            "billing_event.reconcile", attributes={"billing_event.id": event_id, "billing_event.type": event_type}
        ):
            async with database.session() as db:
                outcome = await WebhookReconciler(db, stripe_adapter).reconcile(payload)
                status = BillingEventStatus.SKIPPED if outcome == ReconcileOutcome.SKIPPED else BillingEventStatus.PROCESSED
                await BillingEventInbox(db).mark(event_id, status)

    except Exception as exc:
        log.exception("billing_event_processing_failed")
        try:
            async with database.session() as db:
                await record_error(db, "webhook_processing", exc, reference=event_id, endpoint="/webhooks/stripe")
                await BillingEventInbox(db).mark(event_id, BillingEventStatus.FAILED, error=str(exc)[:2000])
        except Exception:
            log.exception("billing_event_failure_not_recorded")
        billing_events_total.labels(event_type=event_type, outcome="failed").inc()
        return BillingEventStatus.FAILED.value

    billing_events_total.labels(event_type=event_type, outcome=outcome.value).inc()
    log.info("billing_event_processed", event_type=event_type, outcome=outcome.value, attempts=attempts)
    return status.value


async def sweep_stale_events(database: Database, dispatch: Callable[[str], Awaitable[None]]) -> int:
    """Dispatch every event returned by ``requeue_stale``; returns how many."""
    async with database.session() as db:
        event_ids = await BillingEventInbox(db).requeue_stale()

    for event_id in event_ids:
        await dispatch(event_id)

    if event_ids:
        logger.info("billing_events_requeued", count=len(event_ids))
    return len(event_ids)
