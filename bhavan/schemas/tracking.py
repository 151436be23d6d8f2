"""Pydantic schemas for affiliate tracking events."""
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TrackingEventCreate(BaseModel):
    event_type: str
    affiliate_code: Optional[str] = Field(None, max_length=100)
    user_id: Optional[UUID] = None
    property_id: Optional[str] = Field(None, max_length=100)
    metadata: Optional[Any] = None


class TrackingEventResponse(BaseModel):
    event_id: UUID
    affiliate_id: str
