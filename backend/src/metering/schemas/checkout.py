"""Schemas for hosted checkout and customer portal redirects."""
from uuid import UUID

from pydantic import BaseModel, Field


class CheckoutSessionCreate(BaseModel):
    """Start a hosted checkout for a plan."""

    plan_id: UUID = Field(..., description="Plan to subscribe to")


class RedirectURL(BaseModel):
    """URL the client should redirect the browser to."""

    url: str
