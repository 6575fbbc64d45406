"""Notification service — the durable inbox behind every realtime push.

Learn: Rows are written inside the caller's transaction (create() only
flushes), so a state change and the notifications it causes commit
together. The push to live sockets happens after commit and may fail
silently; this table is what clients poll to catch up.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.db.models import Notification
from firemarket.services.errors import NotFoundError


def notification_payload(n: Notification) -> dict[str, Any]:
    """JSON-friendly shape pushed over the WebSocket (camelCase, like the UI)."""
    return {
        "id": str(n.id),
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "isRead": n.is_read,
        "linkUrl": n.link_url,
        "adId": str(n.ad_id) if n.ad_id else None,
        "bidId": str(n.bid_id) if n.bid_id else None,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }


class NotificationService:
    """CRUD over a user's notifications. Every read/write is owner-scoped."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        user_id: uuid.UUID,
        title: str,
        message: str,
        type: str = "info",
        link_url: Optional[str] = None,
        ad_id: Optional[uuid.UUID] = None,
        bid_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Stage a notification in the current transaction (caller commits)."""
        n = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link_url=link_url,
            ad_id=ad_id,
            bid_id=bid_id,
        )
        self.db.add(n)
        await self.db.flush()
        return n

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            q = q.where(Notification.is_read.is_(False))
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        n = await self._get_owned(notification_id, user_id)
        n.is_read = True
        await self.db.commit()
        return n

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        """Returns how many notifications flipped to read."""
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def delete(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> None:
        await self._get_owned(notification_id, user_id)
        await self.db.execute(
            delete(Notification).where(Notification.id == notification_id)
        )
        await self.db.commit()

    async def _get_owned(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Notification:
        # Someone else's notification is reported as missing, not forbidden.
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        n = result.scalars().first()
        if n is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return n
