"""
relaykit exception hierarchy.

Driver errors (storage unavailable) are deliberately absent: they propagate
from the database layer unmodified.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


class RelayError(Exception):
    """Base class for relaykit errors."""


class PayloadValidationError(RelayError, ValueError):
    """An outbox message failed its per-kind schema at enqueue time."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DispatchError(RelayError):
    """Raised by dispatch callbacks to classify a delivery failure."""


class TransientDispatchError(DispatchError):
    """Delivery failed but may succeed later; retried with backoff."""


class PermanentDispatchError(DispatchError):
    """Delivery can never succeed; the item is dead-lettered immediately."""


class UnknownKindError(PermanentDispatchError):
    """No dispatcher is registered for the item's kind."""

    def __init__(self, kind: str):
        super().__init__(f"No dispatcher registered for kind '{kind}'")
        self.kind = kind


class IdempotencyInProgressError(RelayError):
    """Another attempt currently owns the idempotency key."""

    def __init__(self, key: str, started_at: Optional[datetime] = None):
        super().__init__(f"Processing in progress for key: {key}")
        self.key = key
        self.started_at = started_at
