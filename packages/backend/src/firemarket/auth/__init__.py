"""Authentication and authorization.

Learn: Users log in through the portal's auth service, which issues JWT
access tokens. This backend only verifies them — the "sub" claim is the
user id used to scope ads, bids and notifications, and the same identity
authenticates WebSocket connections.
"""
