"""Bid lifecycle coordinator — the ad/bid state machine.

Learn: Every marketplace transition goes through here:
1. Load the ad/bid and check the caller may act (owner / supplier)
2. Validate the transition against the tables below (can't skip steps)
3. Apply it with a CONDITIONAL update — "set status=Y where status=X"
4. Stage the Notification rows in the same transaction, commit
5. After commit, push realtime frames (best-effort, never fails the request)

Why step 3 matters: handlers await the database, so two "accept bid"
requests for the same ad can both pass step 2 with the same stale read.
The event loop gives no atomicity across awaits. Only the database can
decide the race: the guarded UPDATE matches one row for the winner and
zero rows for the loser, who gets a ConflictError.

Ad:  open ──accept──▶ completed
       ├──close───▶ closed
       └──cancel──▶ cancelled
     ("in_progress" = open with bids; derived, never stored here)

Bid: pending ──accept──▶ accepted
            ├──reject───▶ rejected
            ├──outbid───▶ rejected   (another bid on the ad was accepted)
            └──withdraw─▶ withdrawn
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.db.models import Ad, Bid, Notification, utcnow
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.services.errors import (
    ConflictError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from firemarket.services.notification_service import (
    NotificationService,
    notification_payload,
)

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════


class AdStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class AdEvent(str, enum.Enum):
    BID_SUBMITTED = "bid_submitted"
    BID_WITHDRAWN = "bid_withdrawn"
    ACCEPT = "accept"
    CLOSE = "close"
    CANCEL = "cancel"


class BidEvent(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    OUTBID = "outbid"
    WITHDRAW = "withdraw"


# in_progress rows are accepted as sources so ads written by other tools
# that DO store it behave like open ones.
AD_TRANSITIONS: dict[tuple[AdStatus, AdEvent], AdStatus] = {
    (AdStatus.OPEN, AdEvent.BID_SUBMITTED): AdStatus.OPEN,
    (AdStatus.IN_PROGRESS, AdEvent.BID_SUBMITTED): AdStatus.IN_PROGRESS,
    (AdStatus.OPEN, AdEvent.BID_WITHDRAWN): AdStatus.OPEN,
    (AdStatus.IN_PROGRESS, AdEvent.BID_WITHDRAWN): AdStatus.IN_PROGRESS,
    (AdStatus.OPEN, AdEvent.ACCEPT): AdStatus.COMPLETED,
    (AdStatus.IN_PROGRESS, AdEvent.ACCEPT): AdStatus.COMPLETED,
    (AdStatus.OPEN, AdEvent.CLOSE): AdStatus.CLOSED,
    (AdStatus.IN_PROGRESS, AdEvent.CLOSE): AdStatus.CLOSED,
    (AdStatus.OPEN, AdEvent.CANCEL): AdStatus.CANCELLED,
}

BID_TRANSITIONS: dict[tuple[BidStatus, BidEvent], BidStatus] = {
    (BidStatus.PENDING, BidEvent.ACCEPT): BidStatus.ACCEPTED,
    (BidStatus.PENDING, BidEvent.REJECT): BidStatus.REJECTED,
    (BidStatus.PENDING, BidEvent.OUTBID): BidStatus.REJECTED,
    (BidStatus.PENDING, BidEvent.WITHDRAW): BidStatus.WITHDRAWN,
}


def next_ad_status(current: str, event: AdEvent) -> AdStatus:
    """Look up (status, event) in the ad table or raise InvalidTransitionError."""
    try:
        return AD_TRANSITIONS[(AdStatus(current), event)]
    except (KeyError, ValueError):
        raise InvalidTransitionError(
            f"Ad is {current}; cannot {event.value.replace('_', ' ')}"
        )


def next_bid_status(current: str, event: BidEvent) -> BidStatus:
    """Look up (status, event) in the bid table or raise InvalidTransitionError."""
    try:
        return BID_TRANSITIONS[(BidStatus(current), event)]
    except (KeyError, ValueError):
        raise InvalidTransitionError(f"Bid is {current}; cannot {event.value}")


def ad_sources(event: AdEvent) -> list[str]:
    """Every stored ad status from which `event` is legal (the SQL guard)."""
    return sorted({s.value for (s, e) in AD_TRANSITIONS if e == event})


def bid_sources(event: BidEvent) -> list[str]:
    return sorted({s.value for (s, e) in BID_TRANSITIONS if e == event})


def effective_ad_status(ad: Ad) -> str:
    """What the UI shows: an open ad with live bids is "in progress"."""
    if ad.status == AdStatus.OPEN.value and ad.bid_count > 0:
        return AdStatus.IN_PROGRESS.value
    return ad.status


# ═══════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════


Push = Callable[[], Awaitable[Any]]


class BidLifecycleService:
    """Applies marketplace transitions and emits their notifications."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.notifications = NotificationService(db)

    # ─── Submit ──────────────────────────────────────────

    async def submit_bid(
        self,
        ad_id: uuid.UUID,
        supplier_id: uuid.UUID,
        amount: float,
        currency: str = "KZT",
        message: str = "",
        proposed_deadline: Optional[datetime] = None,
    ) -> Bid:
        """Place a pending bid on an open ad and notify the ad owner."""
        ad = await self._get_ad(ad_id)
        if ad.user_id == supplier_id:
            raise NotAuthorizedError("You cannot bid on your own ad")
        next_ad_status(ad.status, AdEvent.BID_SUBMITTED)

        existing = await self.db.execute(
            select(func.count(Bid.id)).where(
                Bid.ad_id == ad_id,
                Bid.supplier_id == supplier_id,
                Bid.status == BidStatus.PENDING.value,
            )
        )
        if existing.scalar_one():
            raise ConflictError("You already have a pending bid on this ad")

        # Counter bump doubles as the "still open" guard.
        result = await self.db.execute(
            update(Ad)
            .where(Ad.id == ad_id, Ad.status.in_(ad_sources(AdEvent.BID_SUBMITTED)))
            .values(bid_count=Ad.bid_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Ad is no longer accepting bids")

        bid = Bid(
            ad_id=ad_id,
            supplier_id=supplier_id,
            amount=amount,
            currency=currency,
            message=message,
            proposed_deadline=proposed_deadline,
            status=BidStatus.PENDING.value,
        )
        self.db.add(bid)
        await self.db.flush()

        n = await self.notifications.create(
            user_id=ad.user_id,
            title="New bid on your ad",
            message=f'You received a bid on "{ad.title}"',
            type="info",
            link_url=_ad_link(ad),
            ad_id=ad.id,
            bid_id=bid.id,
        )
        await self.db.commit()
        await self.db.refresh(bid)

        logger.info(
            "bid.submitted",
            bid_id=str(bid.id),
            ad_id=str(ad_id),
            supplier_id=str(supplier_id),
            amount=amount,
        )
        await self._push([
            self._later("notify_new_bid", ad.user_id, {
                **notification_payload(n),
                "amount": bid.amount,
                "currency": bid.currency,
            }),
        ])
        return bid

    # ─── Accept ──────────────────────────────────────────

    async def accept_bid(self, bid_id: uuid.UUID, actor_id: uuid.UUID) -> Bid:
        """Owner picks a winner: ad completed, every other pending bid rejected.

        Raises:
            NotFoundError: bid or ad missing
            NotAuthorizedError: caller doesn't own the ad (nothing mutated)
            InvalidTransitionError: bid not pending / ad not open
            ConflictError: lost a race with a concurrent accept/close
        """
        bid = await self._get_bid(bid_id)
        ad = await self._get_ad(bid.ad_id)
        self._require_owner(ad, actor_id)
        next_bid_status(bid.status, BidEvent.ACCEPT)
        next_ad_status(ad.status, AdEvent.ACCEPT)

        # The race is decided here: only one request can flip the ad.
        result = await self.db.execute(
            update(Ad)
            .where(
                Ad.id == ad.id,
                Ad.status.in_(ad_sources(AdEvent.ACCEPT)),
                Ad.selected_bid_id.is_(None),
            )
            .values(
                status=AdStatus.COMPLETED.value,
                selected_bid_id=bid.id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This ad is no longer open; the action is no longer valid")

        result = await self.db.execute(
            update(Bid)
            .where(Bid.id == bid.id, Bid.status.in_(bid_sources(BidEvent.ACCEPT)))
            .values(
                status=BidStatus.ACCEPTED.value,
                is_selected=True,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This bid is no longer pending; the action is no longer valid")

        others = (
            await self.db.execute(
                select(Bid.id, Bid.supplier_id, Bid.status).where(
                    Bid.ad_id == ad.id, Bid.id != bid.id
                )
            )
        ).all()
        await self.db.execute(
            update(Bid)
            .where(
                Bid.ad_id == ad.id,
                Bid.id != bid.id,
                Bid.status.in_(bid_sources(BidEvent.OUTBID)),
            )
            .values(
                status=BidStatus.REJECTED.value,
                is_selected=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        winner_note = await self.notifications.create(
            user_id=bid.supplier_id,
            title="Your bid was accepted!",
            message=f'Your bid on "{ad.title}" was accepted',
            type="success",
            link_url=_ad_link(ad),
            ad_id=ad.id,
            bid_id=bid.id,
        )
        # One notice per losing supplier, pointing at their live bid if any
        losing: dict[uuid.UUID, uuid.UUID] = {}
        for other_id, supplier_id, status in others:
            if supplier_id == bid.supplier_id or status == BidStatus.WITHDRAWN.value:
                continue
            if supplier_id not in losing or status == BidStatus.PENDING.value:
                losing[supplier_id] = other_id

        loser_notes: list[Notification] = []
        for supplier_id, other_id in losing.items():
            loser_notes.append(
                await self.notifications.create(
                    user_id=supplier_id,
                    title="Your bid was not selected",
                    message=f'Another bid was chosen for "{ad.title}"',
                    type="info",
                    link_url=_ad_link(ad),
                    ad_id=ad.id,
                    bid_id=other_id,
                )
            )

        await self.db.commit()
        await self.db.refresh(bid)
        await self.db.refresh(ad)

        logger.info(
            "bid.accepted",
            bid_id=str(bid.id),
            ad_id=str(ad.id),
            rejected=len(loser_notes),
        )
        pushes = [
            self._later("notify_bid_status", bid.supplier_id, {
                **notification_payload(winner_note),
                "status": BidStatus.ACCEPTED.value,
            })
        ]
        for n in loser_notes:
            pushes.append(
                self._later("notify_bid_status", n.user_id, {
                    **notification_payload(n),
                    "status": BidStatus.REJECTED.value,
                })
            )
        await self._push(pushes)
        return bid

    # ─── Reject ──────────────────────────────────────────

    async def reject_bid(self, bid_id: uuid.UUID, actor_id: uuid.UUID) -> Bid:
        """Owner turns down one pending bid. The ad stays open."""
        bid = await self._get_bid(bid_id)
        ad = await self._get_ad(bid.ad_id)
        self._require_owner(ad, actor_id)
        next_bid_status(bid.status, BidEvent.REJECT)

        result = await self.db.execute(
            update(Bid)
            .where(Bid.id == bid.id, Bid.status.in_(bid_sources(BidEvent.REJECT)))
            .values(status=BidStatus.REJECTED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This bid is no longer pending; the action is no longer valid")

        n = await self.notifications.create(
            user_id=bid.supplier_id,
            title="Your bid was rejected",
            message=f'Your bid on "{ad.title}" was rejected',
            type="warning",
            link_url=_ad_link(ad),
            ad_id=ad.id,
            bid_id=bid.id,
        )
        await self.db.commit()
        await self.db.refresh(bid)

        logger.info("bid.rejected", bid_id=str(bid.id), ad_id=str(ad.id))
        await self._push([
            self._later("notify_bid_status", bid.supplier_id, {
                **notification_payload(n),
                "status": BidStatus.REJECTED.value,
            }),
        ])
        return bid

    # ─── Withdraw ────────────────────────────────────────

    async def withdraw_bid(self, bid_id: uuid.UUID, supplier_id: uuid.UUID) -> Bid:
        """Supplier pulls a pending bid; the ad's bid counter goes back down."""
        bid = await self._get_bid(bid_id)
        if bid.supplier_id != supplier_id:
            raise NotAuthorizedError("Only the supplier can withdraw this bid")
        next_bid_status(bid.status, BidEvent.WITHDRAW)
        ad = await self._get_ad(bid.ad_id)

        result = await self.db.execute(
            update(Bid)
            .where(Bid.id == bid.id, Bid.status.in_(bid_sources(BidEvent.WITHDRAW)))
            .values(status=BidStatus.WITHDRAWN.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This bid is no longer pending; the action is no longer valid")

        # Counter only moves while the ad is still collecting bids.
        await self.db.execute(
            update(Ad)
            .where(
                Ad.id == ad.id,
                Ad.status.in_(ad_sources(AdEvent.BID_WITHDRAWN)),
                Ad.bid_count > 0,
            )
            .values(bid_count=Ad.bid_count - 1)
            .execution_options(synchronize_session=False)
        )

        n = await self.notifications.create(
            user_id=ad.user_id,
            title="A bid was withdrawn",
            message=f'A supplier withdrew their bid on "{ad.title}"',
            type="info",
            link_url=_ad_link(ad),
            ad_id=ad.id,
            bid_id=bid.id,
        )
        await self.db.commit()
        await self.db.refresh(bid)

        logger.info("bid.withdrawn", bid_id=str(bid.id), ad_id=str(ad.id))
        await self._push([
            self._later("notify_bid_status", ad.user_id, {
                **notification_payload(n),
                "status": BidStatus.WITHDRAWN.value,
            }),
        ])
        return bid

    # ─── Close / cancel ──────────────────────────────────

    async def close_ad(self, ad_id: uuid.UUID, actor_id: uuid.UUID) -> Ad:
        """Owner ends the ad without a winner. Pending bids stay pending."""
        return await self._end_ad(
            ad_id,
            actor_id,
            AdEvent.CLOSE,
            title="Ad closed",
            message='"{title}" was closed by the customer without choosing a supplier',
        )

    async def cancel_ad(self, ad_id: uuid.UUID, actor_id: uuid.UUID) -> Ad:
        """Owner withdraws the ad entirely."""
        return await self._end_ad(
            ad_id,
            actor_id,
            AdEvent.CANCEL,
            title="Ad cancelled",
            message='"{title}" was cancelled by the customer',
        )

    async def _end_ad(
        self,
        ad_id: uuid.UUID,
        actor_id: uuid.UUID,
        event: AdEvent,
        *,
        title: str,
        message: str,
    ) -> Ad:
        ad = await self._get_ad(ad_id)
        self._require_owner(ad, actor_id)
        target = next_ad_status(ad.status, event)

        result = await self.db.execute(
            update(Ad)
            .where(Ad.id == ad.id, Ad.status.in_(ad_sources(event)))
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("This ad is no longer open; the action is no longer valid")

        pending = (
            await self.db.execute(
                select(Bid.id, Bid.supplier_id).where(
                    Bid.ad_id == ad.id, Bid.status == BidStatus.PENDING.value
                )
            )
        ).all()
        notes = []
        for bid_id, supplier_id in pending:
            notes.append(
                await self.notifications.create(
                    user_id=supplier_id,
                    title=title,
                    message=message.format(title=ad.title),
                    type="info",
                    link_url=_ad_link(ad),
                    ad_id=ad.id,
                    bid_id=bid_id,
                )
            )
        await self.db.commit()
        await self.db.refresh(ad)

        logger.info(
            f"ad.{target.value}",
            ad_id=str(ad.id),
            notified=len(notes),
        )
        await self._push([
            self._later("notify_order_status", n.user_id, {
                **notification_payload(n),
                "status": target.value,
            })
            for n in notes
        ])
        return ad

    # ─── Helpers ─────────────────────────────────────────

    async def _get_ad(self, ad_id: uuid.UUID) -> Ad:
        ad = await self.db.get(Ad, ad_id)
        if ad is None:
            raise NotFoundError(f"Ad {ad_id} not found")
        return ad

    async def _get_bid(self, bid_id: uuid.UUID) -> Bid:
        bid = await self.db.get(Bid, bid_id)
        if bid is None:
            raise NotFoundError(f"Bid {bid_id} not found")
        return bid

    @staticmethod
    def _require_owner(ad: Ad, actor_id: uuid.UUID) -> None:
        if ad.user_id != actor_id:
            raise NotAuthorizedError("Not authorized to manage this ad")

    def _later(self, method: str, user_id: uuid.UUID, payload: dict) -> Push:
        async def push():
            return await getattr(self.dispatcher, method)(str(user_id), payload)
        return push

    async def _push(self, pushes: list[Push]) -> None:
        """Run post-commit pushes. A failed push never fails the request."""
        if self.dispatcher is None:
            return
        for push in pushes:
            try:
                await push()
            except Exception as e:
                logger.warning("realtime.push_failed", error=str(e))


def _ad_link(ad: Ad) -> str:
    return f"/marketplace/ads/{ad.slug}"
