"""Domain errors raised by the service layer.

Routes translate these into HTTP status codes; services never import
FastAPI.
"""


class MarketplaceError(Exception):
    """Base class for marketplace business-rule failures."""


class NotFoundError(MarketplaceError):
    """Ad, bid, notification or review doesn't exist (404)."""


class NotAuthorizedError(MarketplaceError):
    """Caller isn't allowed to act on this resource (403)."""


class ConflictError(MarketplaceError):
    """Request is well-formed but conflicts with current state (409)."""


class InvalidTransitionError(ConflictError):
    """A status transition that the state machine doesn't allow."""


class DomainValidationError(MarketplaceError):
    """Business-rule validation that schemas can't express (400)."""
