"""Audit and error logging helpers.

Audit rows are written in the caller's transaction so they commit or roll
back together with the change they describe.
"""
import traceback
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.audit_log import AuditLog
from metering.models.error_log import ErrorLog

logger = structlog.get_logger(__name__)

# Actor recorded for changes driven by processor webhooks
SYSTEM_STRIPE_ACTOR = "system:stripe"


async def log_audit(
    db: AsyncSession,
    actor_id: str,
    action: str,
    target_user_id: Optional[UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    details: Optional[dict] = None,
    request_id: Optional[str] = None,
) -> AuditLog:
    """
    Log an audit entry.

    Args:
        db: Database session
        actor_id: Admin user id, or ``system:stripe`` for webhook-driven changes
        action: Action performed (stripe_subscription_updated, plan_created, ...)
        target_user_id: User affected by the change
        entity_type: Type of entity (subscription, plan, entitlement_override, ...)
        entity_id: Identifier of the entity
        details: Free-form JSON context
        request_id: Request correlation ID

    Returns:
        The created audit entry
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        target_user_id=target_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details or {},
        request_id=request_id,
    )

    db.add(audit_log)
    await db.flush()

    logger.info(
        "audit_log_created",
        actor_id=actor_id,
        action=action,
        target_user_id=str(target_user_id) if target_user_id else None,
        entity_type=entity_type,
        entity_id=audit_log.entity_id,
    )
    return audit_log


async def record_error(
    db: AsyncSession,
    error_type: str,
    exc: BaseException,
    reference: Optional[str] = None,
    endpoint: Optional[str] = None,
    user_id: Optional[UUID] = None,
) -> ErrorLog:
    """Persist a background failure to ``error_logs``."""
    error_log = ErrorLog(
        error_type=error_type,
        error_message=str(exc) or exc.__class__.__name__,
        stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        endpoint=endpoint,
        user_id=user_id,
        reference=reference,
    )
    db.add(error_log)
    await db.flush()

    logger.error("error_log_created", error_type=error_type, reference=reference, error=str(exc))
    return error_log
