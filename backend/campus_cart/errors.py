# Overview: Typed error taxonomy shared by the stores, the negotiation engine, and routes.

"""
Marketplace errors.

Every error carries a stable ``code`` and a stable user-facing message so the
HTTP layer can map it without inspecting store internals. Only BusyError is
safe to retry automatically; the rest need the caller to change something.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for marketplace domain errors."""

    code = "error"
    status = 400
    retryable = False
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(MarketError):
    """Entity absent."""
    code = "not_found"
    status = 404
    default_message = "Not found"


class ForbiddenError(MarketError):
    """Caller is not the party the operation requires."""
    code = "forbidden"
    status = 403
    default_message = "Forbidden"


class InvalidStateError(MarketError):
    """Operation not valid for the entity's current status."""
    code = "invalid_state"
    status = 409
    default_message = "Operation not allowed in the current state"


class InvalidArgumentError(MarketError):
    """Malformed input, rejected before any unit of work begins."""
    code = "invalid_argument"
    status = 400
    default_message = "Invalid argument"


class ConflictError(MarketError):
    """Duplicate pending offer or unexpected live transaction."""
    code = "conflict"
    status = 409
    default_message = "Conflicting request"


class BusyError(MarketError):
    """Lock contention or timeout; the whole operation may be retried."""
    code = "busy"
    status = 503
    retryable = True
    default_message = "Resource is busy, please retry"
