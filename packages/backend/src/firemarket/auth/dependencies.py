"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user from the Authorization header.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Header

from firemarket.auth.jwt import TokenError, verify_token
from firemarket.config import settings


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: user_id is a UUID so it compares directly with the owner
    columns on ads, bids and notifications.
    """

    def __init__(self, user_id: uuid.UUID, role: str = "user"):
        self.user_id = user_id
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin" or str(self.user_id) in settings.admin_user_ids


def identity_from_token(token: str) -> CurrentIdentity:
    """Decode a bearer token into an identity. Raises TokenError."""
    payload = verify_token(token)
    try:
        user_id = uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise TokenError("Invalid token: subject is not a user id")
    return CurrentIdentity(user_id=user_id, role=payload.get("role", "user"))


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return identity_from_token(authorization[7:])
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Admin-only endpoints (manual notifications, broadcasts)."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
