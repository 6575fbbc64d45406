"""Realtime frame type constants.

Learn: Centralizing frame types as constants prevents typos and makes it
easy to discover every message the WebSocket protocol carries. Clients
switch on the "type" key of each JSON frame.
"""

# ─── Client → server ─────────────────────────────────────

AUTH = "auth"
PING = "ping"
SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"

# ─── Server → client: connection-level (system) frames ───

CONNECTION = "connection"
AUTH_SUCCESS = "auth_success"
AUTH_ERROR = "auth_error"
PONG = "pong"

SYSTEM_FRAMES = frozenset({CONNECTION, AUTH_SUCCESS, AUTH_ERROR, PONG})

# ─── Server → client: event frames (authenticated only) ──

NEW_BID = "new_bid"
BID_STATUS_CHANGED = "bid_status_changed"
NEW_ORDER = "new_order"
NEW_MESSAGE = "new_message"
ORDER_STATUS_CHANGED = "order_status_changed"
NOTIFICATION = "notification"
BROADCAST = "broadcast"

EVENT_FRAMES = frozenset({
    NEW_BID,
    BID_STATUS_CHANGED,
    NEW_ORDER,
    NEW_MESSAGE,
    ORDER_STATUS_CHANGED,
    NOTIFICATION,
    BROADCAST,
})
