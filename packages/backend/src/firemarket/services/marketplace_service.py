"""Marketplace service — ads, bid listings and the user dashboard.

Learn: Read paths and ad creation live here. Anything that moves an ad or
bid between states goes through BidLifecycleService instead, so the
transition tables are the only place status values get written.
"""

import re
import secrets
import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from firemarket.db.models import Ad, Bid
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.services.errors import NotFoundError

logger = structlog.get_logger()

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """URL-safe slug: lowercased title words plus a short random suffix."""
    base = _NON_SLUG.sub("-", title.lower()).strip("-")[:80] or "ad"
    return f"{base}-{secrets.token_hex(4)}"


class MarketplaceService:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher

    # ─── Ads ─────────────────────────────────────────────

    async def create_ad(
        self,
        user_id: uuid.UUID,
        title: str,
        description: str = "",
        category_id: Optional[str] = None,
        budget: Optional[float] = None,
        budget_currency: str = "KZT",
        city: Optional[str] = None,
        is_urgent: bool = False,
    ) -> Ad:
        """Publish an open ad, then announce it to suppliers of its category."""
        ad = Ad(
            user_id=user_id,
            title=title,
            slug=slugify(title),
            description=description,
            category_id=category_id,
            budget=budget,
            budget_currency=budget_currency,
            city=city,
            is_urgent=is_urgent,
        )
        self.db.add(ad)
        await self.db.commit()
        await self.db.refresh(ad)
        logger.info("ad.created", ad_id=str(ad.id), category_id=category_id)

        if self.dispatcher is not None and category_id:
            try:
                await self.dispatcher.notify_new_order(category_id, {
                    "adId": str(ad.id),
                    "title": ad.title,
                    "slug": ad.slug,
                    "budget": ad.budget,
                    "currency": ad.budget_currency,
                    "city": ad.city,
                    "isUrgent": ad.is_urgent,
                    "linkUrl": f"/marketplace/ads/{ad.slug}",
                })
            except Exception as e:
                logger.warning("realtime.push_failed", error=str(e))
        return ad

    async def get_ad(self, id_or_slug: str, count_view: bool = True) -> Ad:
        """Fetch an ad (with bids, cheapest first) by UUID or slug."""
        q = select(Ad).options(selectinload(Ad.bids))
        try:
            q = q.where(Ad.id == uuid.UUID(str(id_or_slug)))
        except ValueError:
            q = q.where(Ad.slug == id_or_slug)
        ad = (await self.db.execute(q)).scalars().first()
        if ad is None:
            raise NotFoundError(f"Ad {id_or_slug} not found")

        if count_view:
            await self.db.execute(
                update(Ad)
                .where(Ad.id == ad.id)
                .values(views=Ad.views + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            ad.views += 1
        return ad

    async def list_ads(
        self,
        category_id: Optional[str] = None,
        city: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Ad]:
        """Newest first. Urgent ads are not boosted; the UI sorts as it likes."""
        q = select(Ad)
        if category_id:
            q = q.where(Ad.category_id == category_id)
        if city:
            q = q.where(Ad.city == city)
        if status:
            q = q.where(Ad.status == status)
        q = q.order_by(Ad.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    # ─── Bids ────────────────────────────────────────────

    async def list_bids(self, ad_id: uuid.UUID) -> list[Bid]:
        if await self.db.get(Ad, ad_id) is None:
            raise NotFoundError(f"Ad {ad_id} not found")
        result = await self.db.execute(
            select(Bid)
            .where(Bid.ad_id == ad_id)
            .order_by(Bid.amount.asc(), Bid.created_at.asc())
        )
        return list(result.scalars().all())

    # ─── Dashboard ───────────────────────────────────────

    async def list_user_ads(self, user_id: uuid.UUID) -> list[Ad]:
        result = await self.db.execute(
            select(Ad).where(Ad.user_id == user_id).order_by(Ad.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_user_bids(self, user_id: uuid.UUID) -> list[Bid]:
        result = await self.db.execute(
            select(Bid)
            .where(Bid.supplier_id == user_id)
            .order_by(Bid.created_at.desc())
        )
        return list(result.scalars().all())
