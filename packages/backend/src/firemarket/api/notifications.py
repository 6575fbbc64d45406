"""Notification inbox API.

Learn: Every route is scoped to the caller. Someone else's notification
id answers 404, same as a missing one. The admin POST writes the row and
pushes it to the user's live sockets.
"""

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket.auth.dependencies import CurrentIdentity, get_current_user, require_admin
from firemarket.db.engine import get_db
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.realtime.hub import get_dispatcher
from firemarket.schemas.notification import (
    MarkAllReadResult,
    NotificationCreate,
    NotificationRead,
    UnreadCount,
)
from firemarket.services.errors import NotFoundError
from firemarket.services.notification_service import (
    NotificationService,
    notification_payload,
)

logger = structlog.get_logger()

router = APIRouter()


def _get_service(db: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """The caller's notifications, newest first."""
    return await svc.list_for_user(identity.user_id, unread_only=unread_only, limit=limit)


@router.get("/notifications/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    return {"count": await svc.unread_count(identity.user_id)}


@router.post("/notifications", response_model=NotificationRead, status_code=201)
async def create_notification(
    body: NotificationCreate,
    admin: CurrentIdentity = Depends(require_admin),
    svc: NotificationService = Depends(_get_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Admin: send a notification to one user (row + realtime push)."""
    n = await svc.create(
        user_id=body.user_id,
        title=body.title,
        message=body.message,
        type=body.type,
        link_url=body.link_url,
        ad_id=body.ad_id,
        bid_id=body.bid_id,
    )
    await svc.db.commit()
    logger.info("notification.created", notification_id=str(n.id), by=str(admin.user_id))
    try:
        await dispatcher.notify_user(str(body.user_id), notification_payload(n))
    except Exception as e:
        logger.warning("realtime.push_failed", error=str(e))
    return n


@router.post("/notifications/mark-all-read", response_model=MarkAllReadResult)
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    return {"updated": await svc.mark_all_read(identity.user_id)}


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    try:
        return await svc.mark_read(notification_id, identity.user_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")


@router.delete("/notifications/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    try:
        await svc.delete(notification_id, identity.user_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
