"""
Error taxonomy for the subscription lifecycle.

Every error carries the HTTP status it is surfaced with and an optional
``details`` mapping that is merged into the JSON error body, e.g.
``{"error": "...", "subscription_id": "..."}`` for a conflict.
"""
from typing import Any, Dict, Optional


class SubscriptionError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.details}


class ValidationError(SubscriptionError):
    """Missing or malformed request field. Never retried automatically."""
    status_code = 400


class NotFound(SubscriptionError):
    status_code = 404


class Conflict(SubscriptionError):
    """An open subscription already exists; details carry its id."""
    status_code = 409


class InvalidState(SubscriptionError):
    """Product is not subscription-typed, or the status transition is illegal."""
    status_code = 400


class InternalError(SubscriptionError):
    """Store write failure. The only class callers should retry."""
    status_code = 500
