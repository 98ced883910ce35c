"""Administrative per-user limit overrides."""
from sqlalchemy import Column, Integer, String, UniqueConstraint, Uuid

from metering.models.base import Base


class EntitlementOverride(Base):
    """Replaces the plan limit for one user and feature."""

    __tablename__ = "entitlement_overrides"
    __table_args__ = (
        UniqueConstraint("user_id", "feature", name="uq_entitlement_overrides_user_feature"),
    )

    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    feature = Column(String, nullable=False)
    limit_value = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    created_by = Column(String, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<EntitlementOverride(user_id={self.user_id}, feature={self.feature}, limit={self.limit_value})>"
