"""Plan model for subscription plans and their feature limits."""
from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from metering.models.base import Base, JSONType


class Plan(Base):
    """
    Subscription plan.

    ``features`` maps a feature name to its monthly limit; -1 means unlimited.
    Features missing from the map have a limit of 0.
    """

    __tablename__ = "plans"

    name = Column(String, nullable=False, unique=True)
    price_monthly = Column(Integer, nullable=False, default=0)  # Amount in cents
    currency = Column(String(3), nullable=False, default="BRL")
    stripe_price_id = Column(String, nullable=True, unique=True, index=True)
    features = Column(JSONType, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True, index=True)

    # Relationships
    subscriptions = relationship("Subscription", back_populates="plan")

    def __repr__(self) -> str:
        """String representation."""
        return f"<Plan(id={self.id}, name={self.name}, price_monthly={self.price_monthly})>"
