"""Pydantic schemas for API request/response validation."""

from metering.schemas.audit_log import AuditLog, AuditLogList
from metering.schemas.checkout import CheckoutSessionCreate, RedirectURL
from metering.schemas.entitlement import EntitlementCheckRequest, EntitlementDecision, EntitlementSummary
from metering.schemas.error import EntitlementErrorResponse, ErrorCode, ErrorDetail, ErrorResponse
from metering.schemas.override import Override, OverrideSet
from metering.schemas.plan import Plan, PlanCreate, PlanList, PlanUpdate
from metering.schemas.subscription import Subscription, SubscriptionWithPlan
from metering.schemas.usage import UsageRecordRequest, UsageRecordResult

__all__ = [
    # Audit log schemas
    "AuditLog",
    "AuditLogList",
    # Checkout schemas
    "CheckoutSessionCreate",
    "RedirectURL",
    # Entitlement schemas
    "EntitlementCheckRequest",
    "EntitlementDecision",
    "EntitlementSummary",
    # Error schemas
    "EntitlementErrorResponse",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    # Override schemas
    "Override",
    "OverrideSet",
    # Plan schemas
    "Plan",
    "PlanCreate",
    "PlanList",
    "PlanUpdate",
    # Subscription schemas
    "Subscription",
    "SubscriptionWithPlan",
    # Usage schemas
    "UsageRecordRequest",
    "UsageRecordResult",
]
