"""Read-only queries over the audit log."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.models.audit_log import AuditLog


class AuditLogService:
    """Service layer for audit log queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_audit_logs(
        self,
        page: int = 1,
        page_size: int = 50,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        target_user_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> tuple[list[AuditLog], int]:
        """
        List audit records, newest first.

        Args:
            page: Page number (1-indexed)
            page_size: Items per page
            actor_id: Filter by actor
            action: Filter by action
            target_user_id: Filter by affected user
            since: Inclusive lower bound on ``created_at``
            until: Exclusive upper bound on ``created_at``

        Returns:
            Tuple of (records, total count)
        """
        conditions = []
        if actor_id is not None:
            conditions.append(AuditLog.actor_id == actor_id)
        if action is not None:
            conditions.append(AuditLog.action == action)
        if target_user_id is not None:
            conditions.append(AuditLog.target_user_id == target_user_id)
        if since is not None:
            conditions.append(AuditLog.created_at >= since)
        if until is not None:
            conditions.append(AuditLog.created_at < until)

        total = (await self.db.execute(select(func.count(AuditLog.id)).where(*conditions))).scalar_one()

        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc(), AuditLog.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
