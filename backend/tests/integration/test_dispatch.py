"""Integration tests for dispatcher backends and the arq worker tasks."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from metering.config import settings
from metering.database import Database
from metering.models.billing_event import BillingEvent, BillingEventStatus
from metering.services.billing_event_service import BillingEventInbox
from metering.workers.billing_events import (
    WorkerSettings,
    process_billing_event_task,
    requeue_stale_billing_events,
)
from metering.workers.dispatcher import ArqEventDispatcher, InProcessEventDispatcher, build_dispatcher
from utils.factories import StripeEventFactory
from utils.helpers import FakeStripeAdapter


class RecordingRedis:
    """Stands in for the arq pool in the worker context."""

    def __init__(self):
        self.jobs: list[tuple] = []

    async def enqueue_job(self, function: str, *args):
        self.jobs.append((function, *args))


async def _store(db_session: AsyncSession) -> dict:
    event = StripeEventFactory.create("customer.updated", {"id": "cus_test_123"})
    await BillingEventInbox(db_session).record_received(event)
    await db_session.commit()
    return event


@pytest.mark.asyncio
async def test_build_dispatcher_follows_settings(
    database: Database, fake_stripe: FakeStripeAdapter, monkeypatch
) -> None:
    """Test the backend is chosen by configuration."""
    assert isinstance(build_dispatcher(database, fake_stripe), InProcessEventDispatcher)

    monkeypatch.setattr(settings, "event_queue_backend", "arq")
    assert isinstance(build_dispatcher(database, fake_stripe), ArqEventDispatcher)


@pytest.mark.asyncio
async def test_in_process_dispatcher_drains_queue(
    database: Database, db_session: AsyncSession, dispatcher: InProcessEventDispatcher
) -> None:
    """Test dispatched ids are processed by the worker task."""
    events = [await _store(db_session) for _ in range(3)]

    for event in events:
        await dispatcher.dispatch(event["id"])
    await dispatcher.join()

    for event in events:
        row = await BillingEventInbox(db_session).get(event["id"])
        assert row.status == BillingEventStatus.PROCESSED
    assert dispatcher.queue.qsize() == 0


@pytest.mark.asyncio
async def test_worker_task_processes_event(
    database: Database, db_session: AsyncSession, fake_stripe: FakeStripeAdapter
) -> None:
    """Test the arq task runs the same processing path."""
    event = await _store(db_session)
    ctx = {"database": database, "stripe": fake_stripe}

    assert await process_billing_event_task(ctx, event["id"]) == "processed"
    assert await process_billing_event_task(ctx, event["id"]) is None


@pytest.mark.asyncio
async def test_worker_cron_requeues_stale_events(database: Database, db_session: AsyncSession) -> None:
    """Test the cron job enqueues stale events onto arq."""
    event = await _store(db_session)
    await db_session.execute(
        update(BillingEvent)
        .where(BillingEvent.event_id == event["id"])
        .values(updated_at=datetime.utcnow() - timedelta(hours=1))
    )
    await db_session.commit()
    redis = RecordingRedis()

    assert await requeue_stale_billing_events({"database": database, "redis": redis}) == 1
    assert redis.jobs == [("process_billing_event", event["id"])]


def test_worker_settings_register_jobs() -> None:
    """Test the worker exposes the processing job under the name the dispatcher enqueues."""
    assert [f.name for f in WorkerSettings.functions] == ["process_billing_event"]
    assert len(WorkerSettings.cron_jobs) == 1
