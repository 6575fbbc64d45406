"""Notification dispatcher — server-originated events to live connections.

Learn: Three addressing modes, all fire-and-forget:

1. Addressed  — every authenticated connection bound to one user
2. Topic      — every authenticated connection, frame tagged with a topic
3. Broadcast  — every authenticated connection, optionally minus one user

Topic delivery does NOT consult subscriptions. Clients may send
subscribe/unsubscribe frames and we record them, but filtering by topic is
left to the client. That's a known simplification: a real per-topic fan-out
would change who receives new_order events today.

Delivery is best-effort on top of the durable Notification row. A
transport that isn't writable is skipped (the liveness supervisor will
reap it); a write that raises is logged and the connection unregistered.
Nothing here ever raises into the HTTP request that triggered the event.

NotificationDispatcher is the interface callers depend on. LocalDispatcher
delivers through this process's registry; realtime/pubsub.py provides a
Redis-backed one for multi-process deployments.
"""

import abc
import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from firemarket.events import types as frames
from firemarket.realtime.registry import Connection, ConnectionRegistry

logger = structlog.get_logger()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_envelope(
    mode: str,
    event_type: str,
    data: dict[str, Any],
    *,
    target: Optional[str] = None,
    exclude_user_id: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> dict[str, Any]:
    """Describe one dispatch independently of where it gets delivered."""
    return {
        "mode": mode,  # user, topic, broadcast
        "event_type": event_type,
        "data": data,
        "target": target,
        "exclude_user_id": exclude_user_id,
        "timestamp": timestamp or utc_timestamp(),
    }


class NotificationDispatcher(abc.ABC):
    """The three addressing modes. Return value = frames handed off."""

    @abc.abstractmethod
    async def send_to_user(
        self, user_id: str, event_type: str, data: dict[str, Any]
    ) -> int:
        ...

    @abc.abstractmethod
    async def send_to_topic(
        self, topic: str, event_type: str, data: dict[str, Any]
    ) -> int:
        ...

    @abc.abstractmethod
    async def broadcast(
        self,
        event_type: str,
        data: dict[str, Any],
        exclude_user_id: Optional[str] = None,
    ) -> int:
        ...

    # ─── Named events (the vocabulary the frontend listens for) ──

    async def notify_new_bid(self, user_id: str, notification: dict) -> int:
        return await self.send_to_user(user_id, frames.NEW_BID, notification)

    async def notify_bid_status(self, user_id: str, notification: dict) -> int:
        return await self.send_to_user(
            user_id, frames.BID_STATUS_CHANGED, notification
        )

    async def notify_new_order(self, category_id: str, notification: dict) -> int:
        return await self.send_to_topic(category_id, frames.NEW_ORDER, notification)

    async def notify_message(self, user_id: str, notification: dict) -> int:
        return await self.send_to_user(user_id, frames.NEW_MESSAGE, notification)

    async def notify_order_status(self, user_id: str, notification: dict) -> int:
        return await self.send_to_user(
            user_id, frames.ORDER_STATUS_CHANGED, notification
        )

    async def notify_user(self, user_id: str, notification: dict) -> int:
        return await self.send_to_user(user_id, frames.NOTIFICATION, notification)

    async def broadcast_notification(
        self, notification: dict, exclude_user_id: Optional[str] = None
    ) -> int:
        return await self.broadcast(
            frames.BROADCAST, notification, exclude_user_id=exclude_user_id
        )


class LocalDispatcher(NotificationDispatcher):
    """Delivers straight to the sockets held by this process's registry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    # ─── Addressing modes ────────────────────────────────

    async def send_to_user(
        self, user_id: str, event_type: str, data: dict[str, Any]
    ) -> int:
        return await self.deliver(
            make_envelope("user", event_type, data, target=str(user_id))
        )

    async def send_to_topic(
        self, topic: str, event_type: str, data: dict[str, Any]
    ) -> int:
        return await self.deliver(
            make_envelope("topic", event_type, data, target=str(topic))
        )

    async def broadcast(
        self,
        event_type: str,
        data: dict[str, Any],
        exclude_user_id: Optional[str] = None,
    ) -> int:
        return await self.deliver(
            make_envelope(
                "broadcast",
                event_type,
                data,
                exclude_user_id=str(exclude_user_id) if exclude_user_id else None,
            )
        )

    # ─── Delivery ────────────────────────────────────────

    async def deliver(self, envelope: dict[str, Any]) -> int:
        """Resolve an envelope to local connections and write the frame.

        Also the entry point for envelopes relayed from other processes.
        """
        mode = envelope.get("mode")
        frame = {
            "type": envelope["event_type"],
            "data": envelope.get("data") or {},
            "timestamp": envelope.get("timestamp") or utc_timestamp(),
        }

        if mode == "user":
            ids = self.registry.connections_for(envelope["target"])
            targets = [c for c in map(self.registry.get, ids) if c is not None]
        elif mode == "topic":
            frame["topic"] = envelope["target"]
            if envelope["event_type"] == frames.NEW_ORDER:
                frame["categoryId"] = envelope["target"]
            targets = self.registry.authenticated()
        elif mode == "broadcast":
            excluded = envelope.get("exclude_user_id")
            targets = [
                c for c in self.registry.authenticated()
                if excluded is None or c.user_id != excluded
            ]
        else:
            logger.warning("realtime.unknown_envelope_mode", mode=mode)
            return 0

        if not targets:
            return 0
        return await self._write_many(targets, frame)

    async def send_to_connection(
        self, connection_id: str, frame: dict[str, Any]
    ) -> bool:
        """Connection-level frame (handshake replies, pong). No auth check."""
        conn = self.registry.get(connection_id)
        if conn is None:
            return False
        return await self._write(conn, json.dumps(frame, default=str))

    async def _write_many(self, targets: list[Connection], frame: dict) -> int:
        text = json.dumps(frame, default=str)
        sent = 0
        for conn in targets:
            # Re-check: an earlier write in this loop may have awaited long
            # enough for this connection to be closed and unregistered.
            if conn.connection_id not in self.registry or not conn.is_authenticated:
                continue
            if await self._write(conn, text):
                sent += 1
        return sent

    async def _write(self, conn: Connection, text: str) -> bool:
        if not conn.transport.writable:
            return False
        try:
            await conn.transport.send_text(text)
            return True
        except Exception as e:
            logger.warning(
                "realtime.send_failed",
                connection_id=conn.connection_id,
                user_id=conn.user_id,
                error=str(e),
            )
            self.registry.unregister(conn.connection_id)
            return False
