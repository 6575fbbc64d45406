"""Pydantic schemas for the notification inbox."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """Admin-issued notification for one user."""
    user_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type: str = Field(default="info", pattern=r"^(info|success|warning|error)$")
    link_url: Optional[str] = Field(None, max_length=500)
    ad_id: Optional[uuid.UUID] = None
    bid_id: Optional[uuid.UUID] = None


class NotificationRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    message: str
    type: str
    is_read: bool
    link_url: Optional[str]
    ad_id: Optional[uuid.UUID]
    bid_id: Optional[uuid.UUID]
    created_at: datetime

    model_config = {"from_attributes": True}


class UnreadCount(BaseModel):
    count: int


class MarkAllReadResult(BaseModel):
    updated: int
