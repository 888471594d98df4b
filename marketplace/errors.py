"""Error kinds raised by the order placement core.

The HTTP layer maps each kind to a status code; nothing below the API layer
knows about HTTP.
"""


class MarketplaceError(Exception):
    """Base exception for all domain failures."""

    kind = "error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


class NotFound(MarketplaceError):
    """Referenced address/order does not exist or is not owned by the caller."""

    kind = "not_found"


class InvalidInput(MarketplaceError):
    """Malformed or semantically invalid request."""

    kind = "invalid_input"


class InvalidState(MarketplaceError):
    """Operation not permitted in the entity's current lifecycle state."""

    kind = "invalid_state"


class Conflict(MarketplaceError):
    """Unique constraint violation, e.g. a duplicate order number."""

    kind = "conflict"
    retryable = True
