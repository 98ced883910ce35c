"""Durable inbox of verified billing processor events."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, String, Text

from metering.models.base import Base, JSONType


class BillingEventStatus(enum.Enum):
    """Processing status of an inbox event."""

    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


# Statuses that need no further work
FINAL_STATUSES = (BillingEventStatus.PROCESSED, BillingEventStatus.SKIPPED)


class BillingEvent(Base):
    """
    Verified webhook event awaiting or finished processing.

    Written in the request path before acknowledging the processor, so a crash
    between acknowledgment and processing leaves a ``received`` row behind for
    the sweeper instead of losing the event.
    """

    __tablename__ = "billing_events"

    event_id = Column(String, nullable=False, unique=True, index=True)  # processor event id
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSONType, nullable=False)
    processor_created_at = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(BillingEventStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=BillingEventStatus.RECEIVED,
        index=True,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<BillingEvent(event_id={self.event_id}, event_type={self.event_type}, status={self.status.value})>"
