"""Real-time infrastructure — presence registry + WebSocket fan-out.

Learn: Events flow one way, server → browser:
1. A service commits a state change (and its Notification rows)
2. It hands the event to the NotificationDispatcher
3. The dispatcher finds the recipient's live sockets in the registry
   (directly, or via Redis when several processes serve sockets)

Presence (handshake, pings, eviction) runs independently of HTTP traffic.
"""
