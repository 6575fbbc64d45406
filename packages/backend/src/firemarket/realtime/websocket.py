"""WebSocket endpoint — presence and the auth handshake.

Learn: Clients connect to /ws (optionally /ws?token=JWT). The handler:
1. Accepts, registers the connection, sends a "connection" frame
2. Waits for {"type": "auth", "token": ...} (or a userId claim when
   ws_allow_user_id_claim is on) and binds the connection to that user
3. Answers pings with pongs — pings are the ONLY liveness signal
4. Unregisters on disconnect, however the socket ends

Server → client events don't flow through this loop; services push them
via the dispatcher, which writes to the registered transports directly.
Until a connection is authenticated it only ever receives system frames
(connection, auth_success, auth_error, pong).

This is a long-lived connection — one per browser tab.
"""

import json
import uuid
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from firemarket.auth.dependencies import identity_from_token
from firemarket.auth.jwt import TokenError
from firemarket.config import settings
from firemarket.events import types as frames
from firemarket.realtime.dispatcher import utc_timestamp
from firemarket.realtime.hub import RealtimeHub, get_hub
from firemarket.realtime.registry import WebSocketTransport

logger = structlog.get_logger()
router = APIRouter()


def resolve_identity(msg: dict[str, Any]) -> str:
    """Turn an auth frame into a user id string. Raises TokenError."""
    token = msg.get("token")
    if token:
        return str(identity_from_token(str(token)).user_id)

    claim = msg.get("userId")
    if claim and settings.ws_allow_user_id_claim:
        try:
            return str(uuid.UUID(str(claim)))
        except ValueError:
            raise TokenError("Invalid user id")
    raise TokenError("Authentication required")


class ConnectionSession:
    """Handles frames for one connection. State lives in the registry."""

    def __init__(self, hub: RealtimeHub, connection_id: str):
        self.hub = hub
        self.registry = hub.registry
        self.connection_id = connection_id

    async def reply(self, frame: dict[str, Any]) -> None:
        await self.hub.local.send_to_connection(self.connection_id, frame)

    async def authenticate(self, msg: dict[str, Any]) -> None:
        try:
            user_id = resolve_identity(msg)
        except TokenError as e:
            logger.info("realtime.auth_failed", connection_id=self.connection_id, error=str(e))
            await self.reply({"type": frames.AUTH_ERROR, "message": str(e)})
            return

        if not self.registry.bind(self.connection_id, user_id):
            logger.warning(
                "realtime.rebind_rejected",
                connection_id=self.connection_id,
                user_id=user_id,
            )
            await self.reply({
                "type": frames.AUTH_ERROR,
                "message": "Connection is already authenticated as another user",
            })
            return

        logger.info("realtime.authenticated", connection_id=self.connection_id, user_id=user_id)
        await self.reply({
            "type": frames.AUTH_SUCCESS,
            "message": "Authenticated",
            "userId": user_id,
        })

    async def handle(self, raw: str) -> None:
        """Dispatch one inbound text frame. Never raises for bad input."""
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("realtime.malformed_frame", connection_id=self.connection_id)
            return
        if not isinstance(msg, dict):
            logger.debug("realtime.malformed_frame", connection_id=self.connection_id)
            return

        kind = msg.get("type")
        if kind == frames.AUTH:
            await self.authenticate(msg)
        elif kind == frames.PING:
            self.registry.touch(self.connection_id)
            await self.reply({"type": frames.PONG, "timestamp": utc_timestamp()})
        elif kind in (frames.SUBSCRIBE, frames.UNSUBSCRIBE):
            self.update_channels(kind, msg.get("channel"))
        elif kind in frames.SYSTEM_FRAMES or kind in frames.EVENT_FRAMES:
            # Server-to-client types are never accepted from a client
            logger.debug(
                "realtime.server_frame_dropped",
                connection_id=self.connection_id,
                frame_type=kind,
            )
        else:
            logger.debug(
                "realtime.unknown_frame",
                connection_id=self.connection_id,
                frame_type=kind,
            )

    def update_channels(self, kind: str, channel: Optional[str]) -> None:
        conn = self.registry.get(self.connection_id)
        if conn is None or not conn.is_authenticated or not channel:
            return
        if kind == frames.SUBSCRIBE:
            conn.channels.add(str(channel))
        else:
            conn.channels.discard(str(channel))
        logger.info(
            f"realtime.{kind}",
            connection_id=self.connection_id,
            user_id=conn.user_id,
            channel=channel,
        )


@router.websocket("/ws")
async def realtime_websocket(websocket: WebSocket, hub: RealtimeHub = Depends(get_hub)):
    """WebSocket endpoint for presence and server-pushed events.

    Learn: One receive loop per connection. Everything the server sends
    on its own (bids, notifications) is written by the dispatcher from
    whatever coroutine produced the event, not from here.
    """
    await websocket.accept()
    connection_id = hub.registry.register(WebSocketTransport(websocket))
    session = ConnectionSession(hub, connection_id)
    logger.info("realtime.connected", connection_id=connection_id, total=len(hub.registry))

    try:
        await session.reply({
            "type": frames.CONNECTION,
            "message": "Connected",
            "connectionId": connection_id,
            "timestamp": utc_timestamp(),
        })

        # Same handshake as an auth frame, for clients that put the JWT in the URL.
        token = websocket.query_params.get("token")
        if token:
            await session.authenticate({"type": frames.AUTH, "token": token})

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                logger.debug("realtime.binary_frame_dropped", connection_id=connection_id)
                continue
            await session.handle(text)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("realtime.connection_error", connection_id=connection_id, error=str(e))
    finally:
        conn = hub.registry.unregister(connection_id)
        logger.info(
            "realtime.disconnected",
            connection_id=connection_id,
            user_id=conn.user_id if conn else None,
            total=len(hub.registry),
        )
