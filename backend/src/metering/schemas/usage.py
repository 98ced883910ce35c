"""Schemas for usage recording."""
from datetime import datetime

from pydantic import BaseModel, Field


class UsageRecordRequest(BaseModel):
    """Record one consumption of a feature by the caller."""

    feature: str = Field(..., min_length=1, description="Feature name, e.g. 'generations'")


class UsageRecordResult(BaseModel):
    """Counter state after recording a use."""

    feature: str
    count: int = Field(..., ge=1, description="Counter value after the increment")
    period_start: datetime
