"""Audit log model for tracking billing and entitlement changes."""
from sqlalchemy import Column, String, Uuid

from metering.models.base import Base, JSONType


class AuditLog(Base):
    """
    Append-only audit record.

    ``created_at`` is the record timestamp. Rows are never updated or deleted.
    """

    __tablename__ = "audit_logs"

    actor_id = Column(String, nullable=False, index=True)  # admin user id or "system:stripe"
    action = Column(String, nullable=False, index=True)  # stripe_subscription_updated, plan_created, ...
    target_user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    entity_type = Column(String, nullable=True)  # subscription, plan, entitlement_override, billing_event
    entity_id = Column(String, nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    request_id = Column(String, nullable=True)  # Correlation ID from request

    def __repr__(self) -> str:
        """String representation."""
        return f"<AuditLog(actor_id={self.actor_id}, action={self.action}, target_user_id={self.target_user_id})>"
