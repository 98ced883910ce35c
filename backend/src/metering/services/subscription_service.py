"""Subscription ledger: authoritative user -> plan mapping.

Only the webhook reconciler writes here. Each external subscription id maps to
one row, and a snapshot replaces the stored state only if its processor
timestamp is not older than the one already stored.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from metering.database import dialect_insert
from metering.metrics import subscription_snapshots_total
from metering.models.subscription import ENTITLED_STATUSES, Subscription, SubscriptionStatus
from metering.utils.audit import SYSTEM_STRIPE_ACTOR, log_audit

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Processor-side state of one subscription at one point in time."""

    external_subscription_id: str
    external_customer_id: str
    status: SubscriptionStatus
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    metadata_user_id: Optional[str] = None


class ApplyOutcome(enum.Enum):
    """Result of offering a snapshot to the ledger."""

    APPLIED = "applied"
    STALE = "stale"  # an equal-or-newer snapshot is already stored
    DUPLICATE = "duplicate"  # same event already applied


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    subscription: Optional[Subscription]
    previous_status: Optional[SubscriptionStatus] = None
    created: bool = False


class SubscriptionLedger:
    """Service layer for subscription state."""

    def __init__(self, db: AsyncSession):
        """Initialize ledger with database session."""
        self.db = db

    async def get_active_subscription(self, user_id: UUID) -> Optional[Subscription]:
        """
        Authoritative subscription for entitlement checks.

        Only active/trialing rows count; among several, the one with the most
        recent period wins.

        Args:
            user_id: Local user id

        Returns:
            Subscription with its plan loaded, or None (free plan)
        """
        result = await self.db.execute(
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(ENTITLED_STATUSES),
            )
            .order_by(
                Subscription.current_period_start.desc().nulls_last(),
                Subscription.processor_updated_at.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_subscription_id: str) -> Optional[Subscription]:
        """Get subscription by processor subscription id."""
        result = await self.db.execute(
            select(Subscription).where(Subscription.external_subscription_id == external_subscription_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> list[Subscription]:
        """All subscriptions a user ever had, newest first."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.processor_updated_at.desc())
        )
        return list(result.scalars().all())

    async def apply_snapshot(
        self,
        user_id: UUID,
        plan_id: UUID,
        snapshot: SubscriptionSnapshot,
        version: datetime,
        event_id: str,
        event_type: str,
    ) -> ApplyResult:
        """
        Store ``snapshot`` as the state of its external subscription.

        The write is a compare-and-swap on ``processor_updated_at``: it lands
        only if no newer snapshot is stored. Replaying the same event is a
        no-op. Every applied snapshot appends an audit record.

        Args:
            user_id: Resolved local user
            plan_id: Resolved local plan
            snapshot: Processor state
            version: Processor timestamp of the event carrying the snapshot
            event_id: Processor event id
            event_type: Processor event type

        Returns:
            ApplyResult describing what happened
        """
        log = logger.bind(
            external_subscription_id=snapshot.external_subscription_id,
            event_id=event_id,
            user_id=str(user_id),
        )
        now = datetime.utcnow()
        values = {
            "user_id": user_id,
            "plan_id": plan_id,
            "status": snapshot.status,
            "current_period_start": snapshot.current_period_start,
            "current_period_end": snapshot.current_period_end,
            "cancel_at_period_end": snapshot.cancel_at_period_end,
            "canceled_at": snapshot.canceled_at,
            "external_customer_id": snapshot.external_customer_id,
            "processor_updated_at": version,
            "last_event_id": event_id,
            "updated_at": now,
        }

        existing = await self.get_by_external_id(snapshot.external_subscription_id)

        if existing is None:
            inserted = await self.db.execute(
                dialect_insert(self.db, Subscription.__table__)
                .values(
                    id=uuid4(),
                    created_at=now,
                    external_subscription_id=snapshot.external_subscription_id,
                    **values,
                )
                .on_conflict_do_nothing(index_elements=["external_subscription_id"])
                .returning(Subscription.__table__.c.id)
            )
            if inserted.scalar_one_or_none() is not None:
                subscription = await self.get_by_external_id(snapshot.external_subscription_id)
                await self._audit(subscription, None, event_id, event_type, created=True)
                subscription_snapshots_total.labels(result=ApplyOutcome.APPLIED.value).inc()
                log.info("subscription_created", status=snapshot.status.value)
                return ApplyResult(ApplyOutcome.APPLIED, subscription, created=True)

            # Lost the insert race; fall through to the conditional update
            existing = await self.get_by_external_id(snapshot.external_subscription_id)

        if existing.last_event_id == event_id and existing.processor_updated_at == version:
            log.info("subscription_snapshot_duplicate")
            return ApplyResult(ApplyOutcome.DUPLICATE, existing, previous_status=existing.status)

        previous_status = existing.status
        result = await self.db.execute(
            update(Subscription.__table__)
            .where(
                Subscription.__table__.c.external_subscription_id == snapshot.external_subscription_id,
                Subscription.__table__.c.processor_updated_at <= version,
            )
            .values(**values)
        )

        if result.rowcount == 0:
            subscription_snapshots_total.labels(result=ApplyOutcome.STALE.value).inc()
            log.info(
                "subscription_snapshot_stale",
                stored_version=existing.processor_updated_at.isoformat(),
                offered_version=version.isoformat(),
            )
            return ApplyResult(ApplyOutcome.STALE, existing, previous_status=previous_status)

        await self.db.refresh(existing)
        await self._audit(existing, previous_status, event_id, event_type, created=False)
        subscription_snapshots_total.labels(result=ApplyOutcome.APPLIED.value).inc()
        log.info(
            "subscription_updated",
            previous_status=previous_status.value,
            status=existing.status.value,
        )
        return ApplyResult(ApplyOutcome.APPLIED, existing, previous_status=previous_status)

    async def _audit(
        self,
        subscription: Subscription,
        previous_status: Optional[SubscriptionStatus],
        event_id: str,
        event_type: str,
        created: bool,
    ) -> None:
        if created:
            action = "stripe_subscription_created"
        elif subscription.status == SubscriptionStatus.CANCELED:
            action = "stripe_subscription_canceled"
        else:
            action = "stripe_subscription_updated"

        await log_audit(
            self.db,
            actor_id=SYSTEM_STRIPE_ACTOR,
            action=action,
            target_user_id=subscription.user_id,
            entity_type="subscription",
            entity_id=subscription.id,
            details={
                "event_id": event_id,
                "event_type": event_type,
                "external_subscription_id": subscription.external_subscription_id,
                "plan_id": str(subscription.plan_id),
                "previous_status": previous_status.value if previous_status else None,
                "new_status": subscription.status.value,
                "current_period_end": (
                    subscription.current_period_end.isoformat() if subscription.current_period_end else None
                ),
                "cancel_at_period_end": subscription.cancel_at_period_end,
            },
        )
