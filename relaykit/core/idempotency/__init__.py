"""
Idempotency tracking for retried side-effecting operations.

Usage:
    from relaykit.core.idempotency import IdempotencyTracker, IdempotencyGuard

    tracker = IdempotencyTracker(db)
    async with IdempotencyGuard(tracker, "invoice:42") as guard:
        if guard.should_process:
            guard.result = await issue_invoice(42)
"""

from .models import CheckStatus, IdempotencyRecord, IdempotencyResult, IdempotencyStatus
from .ports import IdempotencyPort
from .tracker import IdempotencyTracker
from .guard import IdempotencyGuard, idempotent

__all__ = [
    "CheckStatus",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyStatus",
    "IdempotencyPort",
    "IdempotencyTracker",
    "IdempotencyGuard",
    "idempotent",
]
