"""Usage counters and the single write path that increments them."""
from datetime import datetime
from typing import Optional, Union
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metering.database import dialect_insert
from metering.exceptions import InternalPersistenceError, ValidationError
from metering.features import Feature, current_period_start, period_end
from metering.metrics import usage_record_failures_total, usage_recorded_total
from metering.models.usage_counter import UsageCounter
from metering.schemas.error import ErrorCode
from metering.schemas.usage import UsageRecordResult

logger = structlog.get_logger(__name__)

usage_counters = UsageCounter.__table__


class UsageCounterStore:
    """Per (user, feature, period) counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_count(self, user_id: UUID, feature: Feature, period_start: datetime) -> int:
        """Current count, 0 if the period has no row yet."""
        result = await self.db.execute(
            select(UsageCounter.count).where(
                UsageCounter.user_id == user_id,
                UsageCounter.feature == feature.value,
                UsageCounter.period_start == period_start,
            )
        )
        return result.scalar_one_or_none() or 0

    async def increment(self, user_id: UUID, feature: Feature, period_start: datetime) -> int:
        """
        Atomically add one use and return the new count.

        A single ``INSERT ... ON CONFLICT DO UPDATE SET count = count + 1``
        statement, so concurrent callers on the same key serialize on the
        row and each observes a distinct count.

        Args:
            user_id: Local user id
            feature: Feature consumed
            period_start: First instant of the period

        Returns:
            Count after the increment
        """
        now = datetime.utcnow()
        stmt = dialect_insert(self.db, usage_counters).values(
            id=uuid4(),
            user_id=user_id,
            feature=feature.value,
            period_start=period_start,
            period_end=period_end(period_start),
            count=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[usage_counters.c.user_id, usage_counters.c.feature, usage_counters.c.period_start],
            set_={"count": usage_counters.c.count + 1, "updated_at": now},
        ).returning(usage_counters.c.count)

        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def get_counts(self, user_id: UUID, period_start: datetime) -> dict[str, int]:
        """All counters of a user in one period, keyed by feature."""
        result = await self.db.execute(
            select(UsageCounter.feature, UsageCounter.count).where(
                UsageCounter.user_id == user_id,
                UsageCounter.period_start == period_start,
            )
        )
        return {feature: count for feature, count in result.all()}


class UsageRecorder:
    """Records consumption after a billable action has succeeded."""

    def __init__(self, db: AsyncSession):
        """Initialize recorder with database session."""
        self.db = db
        self.store = UsageCounterStore(db)

    async def record_usage(
        self,
        user_id: UUID,
        feature: Union[str, Feature],
        now: Optional[datetime] = None,
    ) -> UsageRecordResult:
        """
        Record one unit of ``feature`` for ``user_id`` in the current period.

        The increment is committed before returning, so a successful return
        means the use is durable. Works the same for users without a
        subscription.

        Args:
            user_id: Local user id
            feature: Feature name
            now: Clock override, used to select the period

        Returns:
            Counter state after the increment

        Raises:
            ValidationError: Unknown feature
            InternalPersistenceError: The increment could not be stored
        """
        parsed = Feature.parse(feature)
        if parsed is None:
            raise ValidationError(
                f"Unknown feature '{feature}'",
                details={"field": "feature", "value": str(feature)},
                code=ErrorCode.UNKNOWN_FEATURE,
            )

        period_start = current_period_start(now)
        try:
            count = await self.store.increment(user_id, parsed, period_start)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            usage_record_failures_total.labels(feature=parsed.value).inc()
            logger.error(
                "usage_record_failed",
                user_id=str(user_id),
                feature=parsed.value,
                error=str(e),
            )
            raise InternalPersistenceError(
                "Usage could not be recorded",
                details={"feature": parsed.value},
            ) from e

        usage_recorded_total.labels(feature=parsed.value).inc()
        logger.info(
            "usage_recorded",
            user_id=str(user_id),
            feature=parsed.value,
            count=count,
            period_start=period_start.isoformat(),
        )
        return UsageRecordResult(feature=parsed.value, count=count, period_start=period_start)
