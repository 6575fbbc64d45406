"""Marketplace API — ads, bids and the bid lifecycle.

Learn: These routes are the HTTP interface to the bid state machine.
The service layer handles all validation (ownership, transitions, races).
Routes just translate HTTP to service calls and map domain errors:

    NotFoundError          → 404
    NotAuthorizedError     → 403
    InvalidTransitionError → 409  (well-formed, but the state says no)
    ConflictError          → 409  (lost a race, duplicate bid)

Key patterns:
- POST for creation, PUT for lifecycle actions (accept/reject/close/...)
- The caller's identity always comes from the token, never the body
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.auth.dependencies import CurrentIdentity, get_current_user
from firemarket.db.engine import get_db
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.realtime.hub import get_dispatcher
from firemarket.schemas.marketplace import (
    AdCreate,
    AdDetail,
    AdRead,
    BidCreate,
    BidRead,
)
from firemarket.services.bid_lifecycle import BidLifecycleService
from firemarket.services.errors import (
    ConflictError,
    NotAuthorizedError,
    NotFoundError,
)
from firemarket.services.marketplace_service import MarketplaceService

router = APIRouter()


def _market_svc(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> MarketplaceService:
    return MarketplaceService(db, dispatcher)


def _lifecycle_svc(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BidLifecycleService:
    return BidLifecycleService(db, dispatcher)


# ═══════════════════════════════════════════════════════════
# Ads
# ═══════════════════════════════════════════════════════════


@router.post("/marketplace/ads", response_model=AdRead, status_code=201)
async def create_ad(
    body: AdCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MarketplaceService = Depends(_market_svc),
):
    """Publish a new open ad. Suppliers of the category get a new_order push."""
    return await svc.create_ad(
        user_id=identity.user_id,
        title=body.title,
        description=body.description,
        category_id=body.category_id,
        budget=body.budget,
        budget_currency=body.budget_currency,
        city=body.city,
        is_urgent=body.is_urgent,
    )


@router.get("/marketplace/ads", response_model=list[AdRead])
async def list_ads(
    category_id: Optional[str] = Query(None, description="Filter by category"),
    city: Optional[str] = Query(None, description="Filter by city"),
    status: Optional[str] = Query(
        None,
        pattern=r"^(open|completed|cancelled|closed)$",
        description="Filter by stored status",
    ),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: MarketplaceService = Depends(_market_svc),
):
    """List ads, newest first."""
    return await svc.list_ads(
        category_id=category_id,
        city=city,
        status=status,
        limit=limit,
        offset=offset,
    )


@router.get("/marketplace/ads/{ad_id_or_slug}", response_model=AdDetail)
async def get_ad(
    ad_id_or_slug: str,
    svc: MarketplaceService = Depends(_market_svc),
):
    """Ad detail with its bids (cheapest first). Counts a view."""
    try:
        return await svc.get_ad(ad_id_or_slug)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/marketplace/ads/{ad_id}/close", response_model=AdRead)
async def close_ad(
    ad_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    """Close the ad without a winner. Pending bids stay pending."""
    try:
        return await svc.close_ad(ad_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/marketplace/ads/{ad_id}/cancel", response_model=AdRead)
async def cancel_ad(
    ad_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    """Cancel an open ad."""
    try:
        return await svc.cancel_ad(ad_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ═══════════════════════════════════════════════════════════
# Bids
# ═══════════════════════════════════════════════════════════


@router.post("/marketplace/ads/{ad_id}/bids", response_model=BidRead, status_code=201)
async def submit_bid(
    ad_id: uuid.UUID,
    body: BidCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    """Place a pending bid. The ad owner gets a new_bid push."""
    try:
        return await svc.submit_bid(
            ad_id=ad_id,
            supplier_id=identity.user_id,
            amount=body.amount,
            currency=body.currency,
            message=body.message,
            proposed_deadline=body.proposed_deadline,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/marketplace/ads/{ad_id}/bids", response_model=list[BidRead])
async def list_bids(
    ad_id: uuid.UUID,
    svc: MarketplaceService = Depends(_market_svc),
):
    try:
        return await svc.list_bids(ad_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/marketplace/bids/{bid_id}/accept", response_model=BidRead)
async def accept_bid(
    bid_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    """Accept a bid: the ad completes and every other pending bid is rejected.

    Learn: Returns 409 when a concurrent accept or close got there
    first. Exactly one of two racing accepts on the same ad succeeds.
    """
    try:
        return await svc.accept_bid(bid_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/marketplace/bids/{bid_id}/reject", response_model=BidRead)
async def reject_bid(
    bid_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    try:
        return await svc.reject_bid(bid_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/marketplace/bids/{bid_id}/withdraw", response_model=BidRead)
async def withdraw_bid(
    bid_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: BidLifecycleService = Depends(_lifecycle_svc),
):
    """Supplier withdraws their own pending bid."""
    try:
        return await svc.withdraw_bid(bid_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ═══════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════


@router.get("/dashboard/ads", response_model=list[AdRead])
async def my_ads(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MarketplaceService = Depends(_market_svc),
):
    """Ads posted by the caller."""
    return await svc.list_user_ads(identity.user_id)


@router.get("/dashboard/bids", response_model=list[BidRead])
async def my_bids(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MarketplaceService = Depends(_market_svc),
):
    """Bids placed by the caller."""
    return await svc.list_user_bids(identity.user_id)
