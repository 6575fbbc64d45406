"""Connection registry — who is connected right now, in this process.

Learn: Every accepted WebSocket gets an entry keyed by an opaque
connection id. An entry starts unauthenticated; the handshake binds it
to exactly one user for its whole lifetime. A second index
(user_id → connection ids) makes addressed delivery O(connections of
that user) instead of a scan over every socket.

The registry runs on the event loop and never awaits, so each method is
atomic with respect to other coroutines. Callers that DO await while
iterating (the liveness sweep, fan-out) take a snapshot first.

"Not found" is never an error here: an absent connection or a user with
no sockets is simply offline.
"""

import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from starlette.websockets import WebSocket, WebSocketState


class Transport(Protocol):
    """The slice of a bidirectional channel the realtime layer needs."""

    @property
    def writable(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the Transport protocol."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def writable(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.writable:
            await self.websocket.close(code=code, reason=reason)


@dataclass
class Connection:
    """One live transport and its presence state."""

    connection_id: str
    transport: Transport
    last_liveness: float
    connected_at: float
    user_id: Optional[str] = None
    is_authenticated: bool = False
    channels: set[str] = field(default_factory=set)  # claimed, not enforced


class ConnectionRegistry:
    """In-memory map of live connections plus a per-user index."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._connections: dict[str, Connection] = {}
        self._by_user: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def now(self) -> float:
        return self._clock()

    # ─── Lifecycle ───────────────────────────────────────

    def register(self, transport: Transport) -> str:
        """Allocate an unauthenticated entry and return its id."""
        connection_id = secrets.token_urlsafe(12)
        while connection_id in self._connections:
            connection_id = secrets.token_urlsafe(12)
        now = self._clock()
        self._connections[connection_id] = Connection(
            connection_id=connection_id,
            transport=transport,
            last_liveness=now,
            connected_at=now,
        )
        return connection_id

    def bind(self, connection_id: str, user_id: str) -> bool:
        """Authenticate a connection as user_id.

        Returns False for unknown connections and for an attempt to re-bind
        an authenticated connection to a different user. Binding again to
        the same user is a no-op that returns True.
        """
        conn = self._connections.get(connection_id)
        if conn is None or not user_id:
            return False
        if conn.is_authenticated:
            return conn.user_id == user_id

        conn.user_id = user_id
        conn.is_authenticated = True
        self._by_user.setdefault(user_id, set()).add(connection_id)
        return True

    def touch(self, connection_id: str) -> None:
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.last_liveness = self._clock()

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove an entry. Safe to call any number of times."""
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None
        if conn.user_id is not None:
            ids = self._by_user.get(conn.user_id)
            if ids is not None:
                ids.discard(connection_id)
                if not ids:
                    del self._by_user[conn.user_id]
        return conn

    def clear(self) -> None:
        self._connections.clear()
        self._by_user.clear()

    # ─── Queries ─────────────────────────────────────────

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: str) -> set[str]:
        """Ids of authenticated connections bound to user_id (copy)."""
        return set(self._by_user.get(str(user_id), ()))

    def authenticated(self) -> list[Connection]:
        """Snapshot of every authenticated connection."""
        return [c for c in self._connections.values() if c.is_authenticated]

    def all(self) -> list[Connection]:
        return list(self._connections.values())

    def stale(self, older_than: float) -> list[str]:
        """Ids whose last liveness is more than older_than seconds ago."""
        cutoff = self._clock() - older_than
        return [
            cid for cid, conn in self._connections.items()
            if conn.last_liveness < cutoff
        ]

    def stats(self) -> dict[str, int]:
        total = len(self._connections)
        authenticated = sum(
            1 for c in self._connections.values() if c.is_authenticated
        )
        return {
            "total": total,
            "authenticated": authenticated,
            "anonymous": total - authenticated,
            "users": len(self._by_user),
        }
