"""Audit log API endpoints (admin only)."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from metering.api.deps import get_current_user, get_db
from metering.auth.rbac import Role, require_roles
from metering.schemas.audit_log import AuditLog, AuditLogList
from metering.services.audit_service import AuditLogService

router = APIRouter(prefix="/admin/audit-logs", tags=["Audit"])


@router.get("", response_model=AuditLogList)
@require_roles(Role.ADMIN)
async def list_audit_logs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    actor_id: Optional[str] = Query(None, description="Filter by actor (user id or system:stripe)"),
    action: Optional[str] = Query(None, description="Filter by action"),
    target_user_id: Optional[UUID] = Query(None, description="Filter by affected user"),
    since: Optional[datetime] = Query(None, description="Records at or after this time (UTC)"),
    until: Optional[datetime] = Query(None, description="Records before this time (UTC)"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> AuditLogList:
    """List audit records, newest first."""
    items, total = await AuditLogService(db).list_audit_logs(
        page=page,
        page_size=page_size,
        actor_id=actor_id,
        action=action,
        target_user_id=target_user_id,
        since=since,
        until=until,
    )
    return AuditLogList(
        items=[AuditLog.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )
