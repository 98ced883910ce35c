"""Hand-off of acknowledged billing events to phase-2 processing.

The inbox row is written before dispatch, so a dispatcher only has to carry
event ids. Anything lost here (process crash, full queue, Redis outage) is
recovered by the sweeper from the ``billing_events`` table.
"""
import asyncio
from typing import Optional

import structlog
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from metering.adapters.stripe_adapter import StripeAdapter
from metering.config import settings
from metering.database import Database
from metering.metrics import billing_event_queue_depth
from metering.services.billing_event_service import process_billing_event, sweep_stale_events

logger = structlog.get_logger(__name__)

SWEEP_INTERVAL_SECONDS = 300


class EventDispatcher:
    """Interface shared by dispatcher backends."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def dispatch(self, event_id: str) -> None:
        raise NotImplementedError


class InProcessEventDispatcher(EventDispatcher):
    """
    asyncio queue drained by a worker task owned by the application lifespan.

    Also runs the stale-event sweeper on a fixed interval.
    """

    def __init__(
        self,
        database: Database,
        stripe_adapter: StripeAdapter,
        sweep_interval: Optional[float] = SWEEP_INTERVAL_SECONDS,
    ):
        self.database = database
        self.stripe = stripe_adapter
        self.sweep_interval = sweep_interval
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._sweeper: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the worker (and sweeper) tasks."""
        self._worker = asyncio.create_task(self._run_worker(), name="billing-event-worker")
        if self.sweep_interval:
            self._sweeper = asyncio.create_task(self._run_sweeper(), name="billing-event-sweeper")
        logger.info("event_dispatcher_started", backend="inprocess")

    async def stop(self) -> None:
        """Cancel background tasks; queued ids stay recoverable from the inbox."""
        for task in (self._worker, self._sweeper):
            if task is not None:
                task.cancel()
        for task in (self._worker, self._sweeper):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker = self._sweeper = None
        logger.info("event_dispatcher_stopped", backend="inprocess", pending=self.queue.qsize())

    async def dispatch(self, event_id: str) -> None:
        """Queue an event id for processing."""
        self.queue.put_nowait(event_id)
        billing_event_queue_depth.set(self.queue.qsize())

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self.queue.join()

    async def _run_worker(self) -> None:
        while True:
            event_id = await self.queue.get()
            try:
                await process_billing_event(self.database, self.stripe, event_id)
            finally:
                self.queue.task_done()
                billing_event_queue_depth.set(self.queue.qsize())

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await sweep_stale_events(self.database, self.dispatch)
            except Exception:
                logger.exception("billing_event_sweep_failed")


class ArqEventDispatcher(EventDispatcher):
    """Enqueues event ids onto arq, consumed by ``metering.workers.billing_events``."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_settings = RedisSettings.from_dsn(redis_url or settings.arq_redis_url)
        self.pool: Optional[ArqRedis] = None

    async def start(self) -> None:
        """Open the arq Redis pool."""
        self.pool = await create_pool(self.redis_settings)
        logger.info("event_dispatcher_started", backend="arq")

    async def stop(self) -> None:
        """Close the arq Redis pool."""
        if self.pool is not None:
            await self.pool.aclose()
            self.pool = None
        logger.info("event_dispatcher_stopped", backend="arq")

    async def dispatch(self, event_id: str) -> None:
        """Enqueue an event id for a worker."""
        await self.pool.enqueue_job("process_billing_event", event_id)


def build_dispatcher(database: Database, stripe_adapter: StripeAdapter) -> EventDispatcher:
    """Dispatcher selected by ``settings.event_queue_backend``."""
    if settings.event_queue_backend == "arq":
        return ArqEventDispatcher()
    return InProcessEventDispatcher(database, stripe_adapter)
