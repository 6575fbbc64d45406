"""Review service — customer ratings of suppliers.

Learn: A supplier's rating is not stored; rating_summary() aggregates it
on read (AVG/COUNT over reviews), so it can never drift from the rows.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.db.models import Ad, Review, utcnow
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.services.errors import (
    ConflictError,
    DomainValidationError,
    NotAuthorizedError,
    NotFoundError,
)
from firemarket.services.notification_service import (
    NotificationService,
    notification_payload,
)

logger = structlog.get_logger()


class ReviewService:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.notifications = NotificationService(db)

    async def create_review(
        self,
        reviewer_id: uuid.UUID,
        reviewee_id: uuid.UUID,
        rating: int,
        comment: str = "",
        would_recommend: bool = True,
        ad_id: Optional[uuid.UUID] = None,
    ) -> Review:
        """Persist a review and tell the reviewee about it."""
        if reviewer_id == reviewee_id:
            raise DomainValidationError("You cannot review yourself")
        if ad_id is not None and await self.db.get(Ad, ad_id) is None:
            raise NotFoundError(f"Ad {ad_id} not found")

        review = Review(
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            rating=rating,
            comment=comment,
            would_recommend=would_recommend,
            ad_id=ad_id,
        )
        self.db.add(review)
        await self.db.flush()

        n = await self.notifications.create(
            user_id=reviewee_id,
            title="New review",
            message=f"You received a {rating}-star review",
            type="info",
            link_url=f"/profile/{reviewee_id}#reviews",
            ad_id=ad_id,
        )
        await self.db.commit()
        await self.db.refresh(review)
        logger.info(
            "review.created",
            review_id=str(review.id),
            reviewee_id=str(reviewee_id),
            rating=rating,
        )

        if self.dispatcher is not None:
            try:
                await self.dispatcher.notify_user(
                    str(reviewee_id),
                    {**notification_payload(n), "reviewId": str(review.id)},
                )
            except Exception as e:
                logger.warning("realtime.push_failed", error=str(e))
        return review

    async def list_for_supplier(self, user_id: uuid.UUID) -> list[Review]:
        result = await self.db.execute(
            select(Review)
            .where(Review.reviewee_id == user_id)
            .order_by(Review.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_ad(self, ad_id: uuid.UUID) -> list[Review]:
        result = await self.db.execute(
            select(Review)
            .where(Review.ad_id == ad_id)
            .order_by(Review.created_at.desc())
        )
        return list(result.scalars().all())

    async def respond(
        self, review_id: uuid.UUID, user_id: uuid.UUID, text: str
    ) -> Review:
        """The reviewed supplier may answer a review, once."""
        review = await self.db.get(Review, review_id)
        if review is None:
            raise NotFoundError(f"Review {review_id} not found")
        if review.reviewee_id != user_id:
            raise NotAuthorizedError("Only the reviewed user can respond")

        # Guarded like the bid transitions: two racing responses, one wins.
        result = await self.db.execute(
            update(Review)
            .where(Review.id == review_id, Review.response.is_(None))
            .values(response=text, response_date=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This review already has a response")
        await self.db.commit()
        await self.db.refresh(review)
        return review

    async def rating_summary(self, user_id: uuid.UUID) -> dict:
        result = await self.db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(
                Review.reviewee_id == user_id
            )
        )
        average, count = result.one()
        return {
            "user_id": user_id,
            "average": round(float(average), 2) if average is not None else None,
            "count": count,
        }
