"""Pydantic schemas for the realtime admin endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class BroadcastCreate(BaseModel):
    """Announcement pushed to every authenticated connection."""
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type: str = Field(default="info", pattern=r"^(info|success|warning|error)$")
    data: dict[str, Any] = Field(default_factory=dict)


class BroadcastResult(BaseModel):
    delivered: int


class ConnectionStats(BaseModel):
    total: int
    authenticated: int
    anonymous: int
    users: int
    backend: str
