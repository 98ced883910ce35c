"""Folds verified Stripe events into the subscription ledger.

Event handling:

- ``checkout.session.completed`` (subscription mode): fetch the subscription and apply it
- ``customer.subscription.created`` / ``updated``: apply the event's snapshot
- ``customer.subscription.deleted``: apply the snapshot as canceled
- ``invoice.paid``: fetch the subscription, apply it, audit the payment
- ``invoice.payment_failed``: audit only; status changes arrive as their own event
- anything else: ignored

Events whose customer or price cannot be resolved are skipped with an audit
note instead of raising, so one bad event never blocks the rest.
"""
import enum
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.adapters.stripe_adapter import StripeAdapter
from metering.database import dialect_insert
from metering.models.customer import BillingCustomer
from metering.models.subscription import SubscriptionStatus
from metering.services.plan_service import PlanRegistry
from metering.services.subscription_service import SubscriptionLedger, SubscriptionSnapshot
from metering.utils.audit import SYSTEM_STRIPE_ACTOR, log_audit

logger = structlog.get_logger(__name__)


class ReconcileOutcome(enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    IGNORED = "ignored"


class UnsupportedSnapshot(ValueError):
    """Subscription payload the ledger cannot represent."""


def from_unix(value: Optional[int]) -> Optional[datetime]:
    """Naive UTC datetime from a Unix timestamp."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _id_of(value: Any) -> Optional[str]:
    """Stripe fields hold either an id or the expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def snapshot_from_stripe(subscription: dict[str, Any]) -> SubscriptionSnapshot:
    """
    Build a ledger snapshot from a Stripe subscription object.

    Period boundaries moved from the subscription to its items in newer API
    versions; both places are read.

    Raises:
        UnsupportedSnapshot: Missing ids or a status outside the local enumeration
    """
    subscription_id = subscription.get("id")
    customer_id = _id_of(subscription.get("customer"))
    if not subscription_id or not customer_id:
        raise UnsupportedSnapshot("subscription without id or customer")

    try:
        status = SubscriptionStatus(subscription.get("status"))
    except ValueError:
        raise UnsupportedSnapshot(f"unsupported status {subscription.get('status')!r}") from None

    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price_id = _id_of(first_item.get("price")) if first_item else None

    return SubscriptionSnapshot(
        external_subscription_id=subscription_id,
        external_customer_id=customer_id,
        status=status,
        price_id=price_id,
        current_period_start=from_unix(
            subscription.get("current_period_start") or first_item.get("current_period_start")
        ),
        current_period_end=from_unix(subscription.get("current_period_end") or first_item.get("current_period_end")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        canceled_at=from_unix(subscription.get("canceled_at")),
        metadata_user_id=(subscription.get("metadata") or {}).get("user_id"),
    )


def invoice_subscription_id(invoice: dict[str, Any]) -> Optional[str]:
    """Subscription of an invoice, across API versions."""
    direct = _id_of(invoice.get("subscription"))
    if direct:
        return direct
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return _id_of(details.get("subscription"))


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


class WebhookReconciler:
    """Applies one verified event. Never raises for unresolvable references."""

    def __init__(self, db: AsyncSession, stripe_adapter: StripeAdapter):
        self.db = db
        self.stripe = stripe_adapter
        self.ledger = SubscriptionLedger(db)
        self.plans = PlanRegistry(db)

    async def reconcile(self, event: dict[str, Any]) -> ReconcileOutcome:
        """
        Apply a verified event to local state.

        Args:
            event: Stripe event as a plain dict

        Returns:
            What happened to the event

        Raises:
            UpstreamUnavailableError: A snapshot could not be fetched from Stripe
        """
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}
        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

        handler = handlers.get(event_type)
        if handler is None:
            logger.info("stripe_event_ignored", event_id=event["id"], event_type=event_type)
            return ReconcileOutcome.IGNORED

        return await handler(event, obj)

    async def _handle_checkout_completed(self, event: dict, session: dict) -> ReconcileOutcome:
        if session.get("mode") != "subscription":
            logger.info("checkout_session_ignored", event_id=event["id"], mode=session.get("mode"))
            return ReconcileOutcome.IGNORED

        subscription_id = _id_of(session.get("subscription"))
        if not subscription_id:
            return await self._skip(event, "checkout_without_subscription")

        user_hint = (session.get("metadata") or {}).get("user_id") or session.get("client_reference_id")
        customer_id = _id_of(session.get("customer"))
        user_id = _parse_uuid(user_hint)
        if user_id is not None and customer_id:
            await self._link_customer(user_id, customer_id, (session.get("customer_details") or {}).get("email"))

        subscription = await self.stripe.retrieve_subscription(subscription_id)
        outcome, _ = await self._apply(event, subscription, user_hint=user_hint)
        return outcome

    async def _handle_subscription_changed(self, event: dict, subscription: dict) -> ReconcileOutcome:
        outcome, _ = await self._apply(event, subscription)
        return outcome

    async def _handle_subscription_deleted(self, event: dict, subscription: dict) -> ReconcileOutcome:
        outcome, _ = await self._apply(event, subscription, force_status=SubscriptionStatus.CANCELED)
        return outcome

    async def _handle_invoice_paid(self, event: dict, invoice: dict) -> ReconcileOutcome:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info("invoice_without_subscription_ignored", event_id=event["id"], invoice_id=invoice.get("id"))
            return ReconcileOutcome.IGNORED

        subscription = await self.stripe.retrieve_subscription(subscription_id)
        outcome, user_id = await self._apply(event, subscription)
        if outcome == ReconcileOutcome.SKIPPED:
            return outcome

        await log_audit(
            self.db,
            actor_id=SYSTEM_STRIPE_ACTOR,
            action="stripe_payment_succeeded",
            target_user_id=user_id,
            entity_type="invoice",
            entity_id=invoice.get("id"),
            details={
                "event_id": event["id"],
                "external_subscription_id": subscription_id,
                "amount_paid": invoice.get("amount_paid"),
                "currency": invoice.get("currency"),
            },
        )
        return outcome

    async def _handle_invoice_payment_failed(self, event: dict, invoice: dict) -> ReconcileOutcome:
        customer_id = _id_of(invoice.get("customer"))
        user_id = await self._user_for_customer(customer_id) if customer_id else None

        await log_audit(
            self.db,
            actor_id=SYSTEM_STRIPE_ACTOR,
            action="stripe_payment_failed",
            target_user_id=user_id,
            entity_type="invoice",
            entity_id=invoice.get("id"),
            details={
                "event_id": event["id"],
                "external_customer_id": customer_id,
                "external_subscription_id": invoice_subscription_id(invoice),
                "amount_due": invoice.get("amount_due"),
                "currency": invoice.get("currency"),
                "attempt_count": invoice.get("attempt_count"),
            },
        )
        logger.warning("stripe_payment_failed", event_id=event["id"], user_id=str(user_id) if user_id else None)
        return ReconcileOutcome.PROCESSED

    async def _apply(
        self,
        event: dict,
        subscription: dict,
        user_hint: Optional[str] = None,
        force_status: Optional[SubscriptionStatus] = None,
    ) -> tuple[ReconcileOutcome, Optional[UUID]]:
        try:
            snapshot = snapshot_from_stripe(subscription)
        except UnsupportedSnapshot as e:
            return await self._skip(event, str(e), subscription_id=subscription.get("id")), None

        if force_status is not None:
            snapshot = replace(snapshot, status=force_status)

        user_id = await self._user_for_customer(snapshot.external_customer_id)
        if user_id is None:
            user_id = _parse_uuid(snapshot.metadata_user_id or user_hint)
            if user_id is not None:
                await self._link_customer(user_id, snapshot.external_customer_id)
        if user_id is None:
            skipped = await self._skip(event, "customer_not_found", subscription_id=snapshot.external_subscription_id)
            return skipped, None

        plan = await self.plans.get_plan_by_price_id(snapshot.price_id) if snapshot.price_id else None
        if plan is None:
            return (
                await self._skip(
                    event,
                    "plan_not_found",
                    subscription_id=snapshot.external_subscription_id,
                    user_id=user_id,
                    price_id=snapshot.price_id,
                ),
                None,
            )

        result = await self.ledger.apply_snapshot(
            user_id=user_id,
            plan_id=plan.id,
            snapshot=snapshot,
            version=from_unix(event["created"]),
            event_id=event["id"],
            event_type=event["type"],
        )
        logger.info(
            "stripe_subscription_reconciled",
            event_id=event["id"],
            external_subscription_id=snapshot.external_subscription_id,
            outcome=result.outcome.value,
        )
        # Stale and duplicate snapshots still count as handled
        return ReconcileOutcome.PROCESSED, user_id

    async def _user_for_customer(self, customer_id: str) -> Optional[UUID]:
        result = await self.db.execute(
            select(BillingCustomer.user_id).where(BillingCustomer.external_customer_id == customer_id)
        )
        return result.scalar_one_or_none()

    async def _link_customer(self, user_id: UUID, customer_id: str, email: Optional[str] = None) -> None:
        now = datetime.utcnow()
        await self.db.execute(
            dialect_insert(self.db, BillingCustomer.__table__)
            .values(
                id=uuid4(),
                user_id=user_id,
                external_customer_id=customer_id,
                email=email,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing()
        )

    async def _skip(
        self,
        event: dict,
        reason: str,
        subscription_id: Optional[str] = None,
        user_id: Optional[UUID] = None,
        **details: Any,
    ) -> ReconcileOutcome:
        logger.warning(
            "stripe_event_skipped",
            event_id=event["id"],
            event_type=event["type"],
            reason=reason,
            external_subscription_id=subscription_id,
        )
        await log_audit(
            self.db,
            actor_id=SYSTEM_STRIPE_ACTOR,
            action="stripe_event_skipped",
            target_user_id=user_id,
            entity_type="billing_event",
            entity_id=event["id"],
            details={
                "event_type": event["type"],
                "reason": reason,
                "external_subscription_id": subscription_id,
                **details,
            },
        )
        return ReconcileOutcome.SKIPPED
