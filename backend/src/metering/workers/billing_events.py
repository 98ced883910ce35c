"""
Background worker for billing event processing.

Processes inbox events handed off by the webhook endpoint and, every five
minutes, re-dispatches events that were never processed or whose last
attempt failed.

Usage (with ARQ):
    arq metering.workers.billing_events.WorkerSettings
"""
import structlog
from arq import cron, func
from arq.connections import RedisSettings

from metering.adapters.stripe_adapter import StripeAdapter
from metering.config import settings
from metering.database import Database
from metering.middleware.logging import setup_logging
from metering.services.billing_event_service import process_billing_event, sweep_stale_events

logger = structlog.get_logger(__name__)


async def process_billing_event_task(ctx: dict, event_id: str) -> str | None:
    """
    Process one billing event.

    Args:
        ctx: ARQ context (holds the database and Stripe adapter)
        event_id: Processor event id

    Returns:
        Final inbox status, or None if the event was not claimable
    """
    return await process_billing_event(ctx["database"], ctx["stripe"], event_id)


async def requeue_stale_billing_events(ctx: dict) -> int:
    """
    Re-enqueue events stuck or failed past the stale threshold.

    Args:
        ctx: ARQ context

    Returns:
        Number of events re-enqueued
    """

    async def enqueue(event_id: str) -> None:
        await ctx["redis"].enqueue_job("process_billing_event", event_id)

    return await sweep_stale_events(ctx["database"], enqueue)


async def startup(ctx: dict) -> None:
    """Create the worker's database handle and Stripe client."""
    setup_logging()
    ctx["database"] = Database(settings.database_url, echo=settings.database_echo)
    ctx["stripe"] = StripeAdapter()
    logger.info("billing_event_worker_started")


async def shutdown(ctx: dict) -> None:
    """Dispose of the database handle."""
    await ctx["database"].dispose()
    logger.info("billing_event_worker_stopped")


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [func(process_billing_event_task, name="process_billing_event")]

    cron_jobs = [
        cron(requeue_stale_billing_events, minute=set(range(0, 60, 5)), run_at_startup=True),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(settings.arq_redis_url)

    max_jobs = 10
    job_timeout = 120
