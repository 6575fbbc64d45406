"""Pydantic schemas for reviews and ratings.

Learn: rating bounds (1..5) are enforced here, so the service only
checks rules a schema can't see (no self-reviews, one response).
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ReviewCreate(BaseModel):
    reviewee_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="")
    would_recommend: bool = True
    ad_id: Optional[uuid.UUID] = None


class ReviewRespond(BaseModel):
    response: str = Field(..., min_length=1)


class ReviewRead(BaseModel):
    id: uuid.UUID
    ad_id: Optional[uuid.UUID]
    reviewer_id: uuid.UUID
    reviewee_id: uuid.UUID
    rating: int
    comment: str
    would_recommend: bool
    response: Optional[str]
    response_date: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class RatingSummary(BaseModel):
    user_id: uuid.UUID
    average: Optional[float]
    count: int
