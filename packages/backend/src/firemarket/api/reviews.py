"""Reviews API — customer ratings of suppliers.

Learn:
- POST /reviews → create (reviewee gets a notification push)
- GET /reviews/supplier/:id, /reviews/ad/:id → list
- PUT /reviews/:id/respond → the reviewee answers, once
- GET /users/:id/rating → average + count, computed on read
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.auth.dependencies import CurrentIdentity, get_current_user
from firemarket.db.engine import get_db
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.realtime.hub import get_dispatcher
from firemarket.schemas.review import (
    RatingSummary,
    ReviewCreate,
    ReviewRead,
    ReviewRespond,
)
from firemarket.services.errors import (
    ConflictError,
    DomainValidationError,
    NotAuthorizedError,
    NotFoundError,
)
from firemarket.services.review_service import ReviewService

router = APIRouter()


def _get_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ReviewService:
    return ReviewService(db, dispatcher)


@router.post("/reviews", response_model=ReviewRead, status_code=201)
async def create_review(
    body: ReviewCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ReviewService = Depends(_get_service),
):
    try:
        return await svc.create_review(
            reviewer_id=identity.user_id,
            reviewee_id=body.reviewee_id,
            rating=body.rating,
            comment=body.comment,
            would_recommend=body.would_recommend,
            ad_id=body.ad_id,
        )
    except DomainValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/reviews/supplier/{user_id}", response_model=list[ReviewRead])
async def list_supplier_reviews(
    user_id: uuid.UUID,
    svc: ReviewService = Depends(_get_service),
):
    return await svc.list_for_supplier(user_id)


@router.get("/reviews/ad/{ad_id}", response_model=list[ReviewRead])
async def list_ad_reviews(
    ad_id: uuid.UUID,
    svc: ReviewService = Depends(_get_service),
):
    return await svc.list_for_ad(ad_id)


@router.put("/reviews/{review_id}/respond", response_model=ReviewRead)
async def respond_to_review(
    review_id: uuid.UUID,
    body: ReviewRespond,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: ReviewService = Depends(_get_service),
):
    """The reviewed user answers a review. 409 if already answered."""
    try:
        return await svc.respond(review_id, identity.user_id, body.response)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Review not found")
    except NotAuthorizedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/users/{user_id}/rating", response_model=RatingSummary)
async def user_rating(
    user_id: uuid.UUID,
    svc: ReviewService = Depends(_get_service),
):
    return await svc.rating_summary(user_id)
