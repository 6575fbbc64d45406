"""Realtime admin API — connection stats and broadcasts."""

import structlog
from fastapi import APIRouter, Depends

from firemarket.auth.dependencies import CurrentIdentity, require_admin
from firemarket.realtime.dispatcher import NotificationDispatcher
from firemarket.realtime.hub import RealtimeHub, get_dispatcher, get_hub
from firemarket.schemas.realtime import BroadcastCreate, BroadcastResult, ConnectionStats

logger = structlog.get_logger()

router = APIRouter()


@router.get("/realtime/stats", response_model=ConnectionStats)
async def connection_stats(hub: RealtimeHub = Depends(get_hub)):
    """Live connections held by this process."""
    return hub.stats()


@router.post("/realtime/broadcast", response_model=BroadcastResult)
async def broadcast(
    body: BroadcastCreate,
    admin: CurrentIdentity = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Admin: push an announcement to everyone online except the sender."""
    delivered = await dispatcher.broadcast_notification(
        {
            "title": body.title,
            "message": body.message,
            "type": body.type,
            **body.data,
        },
        exclude_user_id=str(admin.user_id),
    )
    logger.info("realtime.broadcast", by=str(admin.user_id), delivered=delivered)
    return {"delivered": delivered}
