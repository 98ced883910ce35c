"""Error log for failures that have no caller to report to."""
from sqlalchemy import Column, String, Text, Uuid

from metering.models.base import Base


class ErrorLog(Base):
    """Background processing failure captured for operators."""

    __tablename__ = "error_logs"

    error_type = Column(String, nullable=False, index=True)  # webhook_processing, ...
    error_message = Column(Text, nullable=False)
    stack_trace = Column(Text, nullable=True)
    endpoint = Column(String, nullable=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True)
    reference = Column(String, nullable=True, index=True)  # e.g. processor event id

    def __repr__(self) -> str:
        """String representation."""
        return f"<ErrorLog(error_type={self.error_type}, reference={self.reference})>"
