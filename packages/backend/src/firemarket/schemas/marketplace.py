"""Pydantic schemas for ads and bids.

Learn: Separate schemas for create/read keeps the API clean.
- AdCreate / BidCreate: what you POST
- AdRead: what the API returns, including the derived effective_status
- AdDetail: AdRead plus the bids, cheapest first
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from firemarket.services.bid_lifecycle import effective_ad_status


# ─── Ads ─────────────────────────────────────────────────

class AdCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="")
    category_id: Optional[str] = Field(None, max_length=100)
    budget: Optional[float] = Field(None, gt=0)
    budget_currency: str = Field(default="KZT", pattern=r"^[A-Z]{3}$")
    city: Optional[str] = Field(None, max_length=100)
    is_urgent: bool = False


class AdRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    category_id: Optional[str]
    title: str
    slug: str
    description: str
    budget: Optional[float]
    budget_currency: str
    city: Optional[str]
    is_urgent: bool
    status: str
    selected_bid_id: Optional[uuid.UUID]
    views: int
    bid_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def effective_status(self) -> str:
        """"in_progress" for an open ad that has bids."""
        return effective_ad_status(self)


# ─── Bids ────────────────────────────────────────────────

class BidCreate(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field(default="KZT", pattern=r"^[A-Z]{3}$")
    message: str = Field(default="")
    proposed_deadline: Optional[datetime] = None


class BidRead(BaseModel):
    id: uuid.UUID
    ad_id: uuid.UUID
    supplier_id: uuid.UUID
    amount: float
    currency: str
    message: str
    proposed_deadline: Optional[datetime]
    status: str
    is_selected: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AdDetail(AdRead):
    bids: list[BidRead] = Field(default_factory=list)
