"""Per-user, per-feature, per-period usage counters."""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, Uuid

from metering.models.base import Base


class UsageCounter(Base):
    """
    Consumption count for one (user, feature, period).

    Created lazily on first use in a period and only ever incremented.
    """

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("user_id", "feature", "period_start", name="uq_usage_counters_user_feature_period"),
    )

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    feature = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<UsageCounter(user_id={self.user_id}, feature={self.feature}, "
            f"period_start={self.period_start}, count={self.count})>"
        )
