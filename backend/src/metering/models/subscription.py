"""Subscription model mirrored from the billing processor."""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import relationship

from metering.models.base import Base


class SubscriptionStatus(enum.Enum):
    """Subscription status, mirrored 1:1 from the processor."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


# Statuses that grant the plan's entitlements
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class Subscription(Base):
    """
    A user's subscription to a plan.

    Rows are keyed by ``external_subscription_id`` and written only by the
    webhook reconciler. ``processor_updated_at`` is the processor-side
    timestamp of the snapshot currently stored; older snapshots are rejected.
    Rows are never deleted; cancellation is a status.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("plans.id"), nullable=False, index=True)
    status = Column(
        SQLEnum(SubscriptionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime, nullable=True)
    external_subscription_id = Column(String, nullable=False, unique=True, index=True)
    external_customer_id = Column(String, nullable=False, index=True)
    processor_updated_at = Column(DateTime, nullable=False)
    last_event_id = Column(String, nullable=True)

    # Relationships
    plan = relationship("Plan", back_populates="subscriptions")

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status.value})>"
