"""SQLAlchemy ORM models for the metering service."""
# Import all models here to ensure they are registered with Alembic

from metering.models.base import Base
from metering.models.plan import Plan
from metering.models.customer import BillingCustomer
from metering.models.subscription import Subscription, SubscriptionStatus, ENTITLED_STATUSES
from metering.models.usage_counter import UsageCounter
from metering.models.entitlement_override import EntitlementOverride
from metering.models.audit_log import AuditLog
from metering.models.billing_event import BillingEvent, BillingEventStatus
from metering.models.error_log import ErrorLog

__all__ = [
    "Base",
    "Plan",
    "BillingCustomer",
    "Subscription",
    "SubscriptionStatus",
    "ENTITLED_STATUSES",
    "UsageCounter",
    "EntitlementOverride",
    "AuditLog",
    "BillingEvent",
    "BillingEventStatus",
    "ErrorLog",
]
