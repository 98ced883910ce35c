"""Pydantic schemas for AuditLog model."""
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditLog(BaseModel):
    """Schema for returning audit log data."""

    id: UUID
    actor_id: str
    action: str
    target_user_id: UUID | None
    entity_type: str | None
    entity_id: str | None
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogList(BaseModel):
    """Schema for paginated audit log list."""

    items: list[AuditLog]
    total: int
    page: int
    page_size: int
