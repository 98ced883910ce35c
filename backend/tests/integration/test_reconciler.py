"""Integration tests for folding Stripe events into the subscription ledger."""
import time
from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.audit_log import AuditLog
from metering.models.customer import BillingCustomer
from metering.models.plan import Plan
from metering.models.subscription import Subscription, SubscriptionStatus
from metering.services.entitlement_service import EntitlementEvaluator
from metering.services.reconciler_service import ReconcileOutcome, WebhookReconciler
from metering.services.subscription_service import SubscriptionLedger
from utils.factories import (
    MONTH_SECONDS,
    StripeCheckoutSessionFactory,
    StripeEventFactory,
    StripeInvoiceFactory,
    StripeSubscriptionFactory,
)
from utils.helpers import FakeStripeAdapter


async def _audit_actions(db_session: AsyncSession, target_user_id: UUID | None = None) -> list[str]:
    query = select(AuditLog.action).order_by(AuditLog.created_at, AuditLog.id)
    if target_user_id is not None:
        query = query.where(AuditLog.target_user_id == target_user_id)
    return list((await db_session.execute(query)).scalars().all())


async def _subscriptions(db_session: AsyncSession, user_id: UUID) -> list[Subscription]:
    db_session.expire_all()
    return await SubscriptionLedger(db_session).list_for_user(user_id)


@pytest.mark.asyncio
async def test_subscription_created_links_plan(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan, billing_customer: BillingCustomer
) -> None:
    """Test a subscription event for a known customer creates the ledger row."""
    subscription = StripeSubscriptionFactory.create({"customer": billing_customer.external_customer_id})
    event = StripeEventFactory.subscription("customer.subscription.created", subscription)

    outcome = await WebhookReconciler(db_session, fake_stripe).reconcile(event)
    await db_session.commit()

    assert outcome == ReconcileOutcome.PROCESSED
    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert len(rows) == 1
    assert rows[0].plan_id == basic_plan.id
    assert rows[0].status == SubscriptionStatus.ACTIVE
    assert rows[0].external_subscription_id == subscription["id"]
    assert rows[0].last_event_id == event["id"]
    assert await _audit_actions(db_session, billing_customer.user_id) == ["stripe_subscription_created"]


@pytest.mark.asyncio
async def test_replayed_event_is_idempotent(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan, billing_customer: BillingCustomer
) -> None:
    """Test applying the same event twice leaves one row and one audit record."""
    subscription = StripeSubscriptionFactory.create({"customer": billing_customer.external_customer_id})
    event = StripeEventFactory.subscription("customer.subscription.updated", subscription)
    reconciler = WebhookReconciler(db_session, fake_stripe)

    await reconciler.reconcile(event)
    await db_session.commit()
    await reconciler.reconcile(event)
    await db_session.commit()

    assert len(await _subscriptions(db_session, billing_customer.user_id)) == 1
    assert await _audit_actions(db_session, billing_customer.user_id) == ["stripe_subscription_created"]


@pytest.mark.asyncio
async def test_out_of_order_events_keep_newest_snapshot(
    db_session: AsyncSession,
    fake_stripe: FakeStripeAdapter,
    basic_plan: Plan,
    premium_plan: Plan,
    billing_customer: BillingCustomer,
) -> None:
    """Test an older event delivered after a newer one does not overwrite it."""
    now = int(time.time())
    upgraded = StripeSubscriptionFactory.create(
        {"id": "sub_reorder", "customer": billing_customer.external_customer_id, "price_id": "price_premium_monthly"}
    )
    original = dict(upgraded, items=StripeSubscriptionFactory.create({"price_id": "price_basic_monthly"})["items"])
    older = StripeEventFactory.subscription("customer.subscription.updated", original, created=now - 60)
    newer = StripeEventFactory.subscription("customer.subscription.updated", upgraded, created=now)
    reconciler = WebhookReconciler(db_session, fake_stripe)

    await reconciler.reconcile(newer)
    await db_session.commit()
    await reconciler.reconcile(older)
    await db_session.commit()

    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert len(rows) == 1
    assert rows[0].plan_id == premium_plan.id
    assert rows[0].last_event_id == newer["id"]


@pytest.mark.asyncio
@pytest.mark.parametrize("newest_first", [True, False])
async def test_latest_period_end_wins_in_either_delivery_order(
    db_session: AsyncSession,
    fake_stripe: FakeStripeAdapter,
    basic_plan: Plan,
    billing_customer: BillingCustomer,
    newest_first: bool,
) -> None:
    """Test the snapshot with the later processor timestamp sets the period end in both orders."""
    now = int(time.time())
    first = StripeSubscriptionFactory.create({"id": "sub_renewal", "customer": billing_customer.external_customer_id})
    renewed = dict(
        first,
        current_period_start=first["current_period_end"],
        current_period_end=first["current_period_end"] + MONTH_SECONDS,
    )
    older = StripeEventFactory.subscription("customer.subscription.updated", first, created=now - 60)
    newer = StripeEventFactory.subscription("customer.subscription.updated", renewed, created=now)
    deliveries = [newer, older] if newest_first else [older, newer]
    reconciler = WebhookReconciler(db_session, fake_stripe)

    for event in deliveries:
        await reconciler.reconcile(event)
        await db_session.commit()

    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert len(rows) == 1
    expected_end = datetime.fromtimestamp(renewed["current_period_end"], tz=timezone.utc).replace(tzinfo=None)
    assert rows[0].current_period_end == expected_end
    assert rows[0].last_event_id == newer["id"]


@pytest.mark.asyncio
async def test_checkout_then_update_yields_single_row(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan
) -> None:
    """Test checkout completion and the following update converge on one active subscription."""
    user_id = uuid4()
    now = int(time.time())
    subscription = StripeSubscriptionFactory.create({"customer": "cus_checkout", "user_id": user_id})
    fake_stripe.subscriptions[subscription["id"]] = subscription
    session = StripeCheckoutSessionFactory.create(user_id, subscription["id"], {"customer": "cus_checkout"})
    checkout = StripeEventFactory.create("checkout.session.completed", session, {"created": now - 5})
    updated = StripeEventFactory.subscription("customer.subscription.updated", subscription, created=now)
    reconciler = WebhookReconciler(db_session, fake_stripe)

    assert await reconciler.reconcile(checkout) == ReconcileOutcome.PROCESSED
    await db_session.commit()
    assert await reconciler.reconcile(updated) == ReconcileOutcome.PROCESSED
    await db_session.commit()

    rows = await _subscriptions(db_session, user_id)
    assert len(rows) == 1
    assert rows[0].status == SubscriptionStatus.ACTIVE
    customer = (
        await db_session.execute(select(BillingCustomer).where(BillingCustomer.user_id == user_id))
    ).scalar_one()
    assert customer.external_customer_id == "cus_checkout"

    decision = await EntitlementEvaluator(db_session).evaluate(user_id, "generations")
    assert decision.limit_value == 50


@pytest.mark.asyncio
async def test_checkout_in_payment_mode_is_ignored(db_session: AsyncSession, fake_stripe: FakeStripeAdapter) -> None:
    """Test one-off payment checkouts do not touch the ledger."""
    session = StripeCheckoutSessionFactory.create(uuid4(), "sub_unused", {"mode": "payment", "subscription": None})
    event = StripeEventFactory.create("checkout.session.completed", session)

    assert await WebhookReconciler(db_session, fake_stripe).reconcile(event) == ReconcileOutcome.IGNORED


@pytest.mark.asyncio
async def test_subscription_deleted_cancels(
    db_session: AsyncSession,
    fake_stripe: FakeStripeAdapter,
    premium_plan: Plan,
    free_plan: Plan,
    billing_customer: BillingCustomer,
) -> None:
    """Test deletion marks the subscription canceled and drops the user to the default plan."""
    now = int(time.time())
    subscription = StripeSubscriptionFactory.create(
        {"customer": billing_customer.external_customer_id, "price_id": "price_premium_monthly"}
    )
    reconciler = WebhookReconciler(db_session, fake_stripe)
    await reconciler.reconcile(
        StripeEventFactory.subscription("customer.subscription.created", subscription, created=now - 10)
    )
    await db_session.commit()

    # Deleted payloads may still report the last live status
    await reconciler.reconcile(
        StripeEventFactory.subscription("customer.subscription.deleted", subscription, created=now)
    )
    await db_session.commit()

    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert rows[0].status == SubscriptionStatus.CANCELED
    assert await _audit_actions(db_session, billing_customer.user_id) == [
        "stripe_subscription_created",
        "stripe_subscription_canceled",
    ]
    decision = await EntitlementEvaluator(db_session).evaluate(billing_customer.user_id, "generations")
    assert decision.limit_value == 5


@pytest.mark.asyncio
async def test_payment_failed_only_audits(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan, billing_customer: BillingCustomer
) -> None:
    """Test a failed payment writes one audit record and leaves the status alone."""
    subscription = StripeSubscriptionFactory.create({"customer": billing_customer.external_customer_id})
    reconciler = WebhookReconciler(db_session, fake_stripe)
    await reconciler.reconcile(
        StripeEventFactory.subscription("customer.subscription.created", subscription, created=int(time.time()) - 10)
    )
    await db_session.commit()

    invoice = StripeInvoiceFactory.create(
        {"customer": billing_customer.external_customer_id, "subscription": subscription["id"]}
    )
    outcome = await reconciler.reconcile(StripeEventFactory.create("invoice.payment_failed", invoice))
    await db_session.commit()

    assert outcome == ReconcileOutcome.PROCESSED
    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert rows[0].status == SubscriptionStatus.ACTIVE
    actions = await _audit_actions(db_session, billing_customer.user_id)
    assert actions.count("stripe_payment_failed") == 1
    assert len(actions) == 2


@pytest.mark.asyncio
async def test_invoice_paid_refreshes_subscription(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan, billing_customer: BillingCustomer
) -> None:
    """Test a paid invoice fetches the subscription, applies it and audits the payment."""
    subscription = StripeSubscriptionFactory.create(
        {"customer": billing_customer.external_customer_id, "status": "past_due"}
    )
    reconciler = WebhookReconciler(db_session, fake_stripe)
    await reconciler.reconcile(
        StripeEventFactory.subscription("customer.subscription.updated", subscription, created=int(time.time()) - 10)
    )
    await db_session.commit()

    fake_stripe.subscriptions[subscription["id"]] = dict(subscription, status="active")
    invoice = StripeInvoiceFactory.create(
        {
            "customer": billing_customer.external_customer_id,
            "subscription": subscription["id"],
            "amount_paid": 4990,
        }
    )
    outcome = await reconciler.reconcile(StripeEventFactory.create("invoice.paid", invoice))
    await db_session.commit()

    assert outcome == ReconcileOutcome.PROCESSED
    rows = await _subscriptions(db_session, billing_customer.user_id)
    assert rows[0].status == SubscriptionStatus.ACTIVE
    assert await _audit_actions(db_session, billing_customer.user_id) == [
        "stripe_subscription_created",
        "stripe_subscription_updated",
        "stripe_payment_succeeded",
    ]


@pytest.mark.asyncio
async def test_invoice_without_subscription_is_ignored(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter
) -> None:
    """Test one-off invoices are ignored."""
    event = StripeEventFactory.create("invoice.paid", StripeInvoiceFactory.create())

    assert await WebhookReconciler(db_session, fake_stripe).reconcile(event) == ReconcileOutcome.IGNORED


@pytest.mark.asyncio
async def test_unresolvable_customer_is_skipped(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan
) -> None:
    """Test events for unknown customers are skipped with an audit note instead of raising."""
    subscription = StripeSubscriptionFactory.create({"customer": "cus_unknown"})
    event = StripeEventFactory.subscription("customer.subscription.updated", subscription)

    outcome = await WebhookReconciler(db_session, fake_stripe).reconcile(event)
    await db_session.commit()

    assert outcome == ReconcileOutcome.SKIPPED
    assert (await db_session.execute(select(func.count(Subscription.id)))).scalar_one() == 0
    skipped = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == "stripe_event_skipped"))
    ).scalar_one()
    assert skipped.details["reason"] == "customer_not_found"
    assert skipped.entity_id == event["id"]


@pytest.mark.asyncio
async def test_unknown_price_is_skipped(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, billing_customer: BillingCustomer
) -> None:
    """Test a price with no local plan is skipped."""
    subscription = StripeSubscriptionFactory.create(
        {"customer": billing_customer.external_customer_id, "price_id": "price_legacy"}
    )
    event = StripeEventFactory.subscription("customer.subscription.created", subscription)

    outcome = await WebhookReconciler(db_session, fake_stripe).reconcile(event)
    await db_session.commit()

    assert outcome == ReconcileOutcome.SKIPPED
    skipped = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == "stripe_event_skipped"))
    ).scalar_one()
    assert skipped.details["reason"] == "plan_not_found"
    assert skipped.details["price_id"] == "price_legacy"


@pytest.mark.asyncio
async def test_metadata_user_links_new_customer(
    db_session: AsyncSession, fake_stripe: FakeStripeAdapter, basic_plan: Plan
) -> None:
    """Test a subscription carrying the user id in metadata links its customer."""
    user_id = uuid4()
    subscription = StripeSubscriptionFactory.create({"customer": "cus_from_metadata", "user_id": user_id})

    outcome = await WebhookReconciler(db_session, fake_stripe).reconcile(
        StripeEventFactory.subscription("customer.subscription.created", subscription)
    )
    await db_session.commit()

    assert outcome == ReconcileOutcome.PROCESSED
    linked = (
        await db_session.execute(
            select(BillingCustomer.user_id).where(BillingCustomer.external_customer_id == "cus_from_metadata")
        )
    ).scalar_one()
    assert linked == user_id


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored(db_session: AsyncSession, fake_stripe: FakeStripeAdapter) -> None:
    """Test unrelated event types are acknowledged and ignored."""
    event = StripeEventFactory.create("customer.updated", {"id": "cus_test_123", "object": "customer"})

    assert await WebhookReconciler(db_session, fake_stripe).reconcile(event) == ReconcileOutcome.IGNORED
    assert await _audit_actions(db_session) == []
