"""FireMarket — marketplace backend for the fire-safety portal.

Ads (work requests), supplier bids, durable notifications, reviews,
and the real-time WebSocket layer that pushes marketplace events to
whoever is online.
"""

__version__ = "0.1.0"
