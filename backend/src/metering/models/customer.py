"""Mapping between local users and billing processor customers."""
from sqlalchemy import Column, String, Uuid

from metering.models.base import Base


class BillingCustomer(Base):
    """Processor customer owned by exactly one user."""

    __tablename__ = "billing_customers"

    user_id = Column(Uuid(as_uuid=True), nullable=False, unique=True, index=True)
    external_customer_id = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<BillingCustomer(user_id={self.user_id}, external_customer_id={self.external_customer_id})>"
