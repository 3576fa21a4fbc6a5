"""
Idempotency Guard

Wraps a side-effecting operation so duplicates of the same request are
answered from the recorded outcome instead of running twice.
"""

import logging
from functools import wraps
from typing import Any, Callable, Optional

from ..errors import IdempotencyInProgressError
from .models import CheckStatus, IdempotencyResult
from .ports import IdempotencyPort

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Runs a block at most once per idempotency key.

    Usage:
        async with IdempotencyGuard(tracker, f"welcome-email:{user_id}") as guard:
            if guard.should_process:
                guard.result = await send_welcome(user_id)
            else:
                logger.info(f"Already handled: {guard.outcome.status}")

    A clean exit records the attempt as completed (with `guard.result`);
    an exception records it as failed and is re-raised.
    """

    def __init__(self, tracker: IdempotencyPort, key: str, ttl_ms: Optional[int] = None):
        self.tracker = tracker
        self.key = key
        self.ttl_ms = ttl_ms
        self.should_process = False
        self.outcome: Optional[IdempotencyResult] = None
        self.result: Any = None

    async def __aenter__(self):
        self.outcome = await self.tracker.check(self.key, self.ttl_ms)
        self.should_process = self.outcome.status == CheckStatus.NEW.value
        if not self.should_process:
            logger.debug(f"IdempotencyGuard: key {self.key} is {self.outcome.status}, skipping")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if not self.should_process:
            return False

        if exc_type is None:
            await self.tracker.complete(self.key, self.result)
            return False

        # Record the failure, but never mask the original exception
        try:
            await self.tracker.fail(self.key, str(exc_val) or exc_type.__name__)
            logger.warning(f"IdempotencyGuard: attempt for {self.key} failed: {exc_val}")
        except Exception as record_error:
            logger.error(
                f"IdempotencyGuard: failed to record failure for {self.key}: {record_error}"
            )
        return False


def idempotent(
    tracker: IdempotencyPort,
    key_fn: Callable[..., str],
    key_prefix: str = "",
    ttl_ms: Optional[int] = None,
    store_result: bool = False,
) -> Callable:
    """
    Decorator making an async function idempotent per derived key.

    - completed: returns the cached result (None unless store_result)
    - in progress elsewhere: raises IdempotencyInProgressError
    - previously failed: clears the key and runs again
    - new: runs and records the outcome

    Usage:
        @idempotent(tracker, key_fn=lambda order_id: order_id, key_prefix="charge:", store_result=True)
        async def charge(order_id: str) -> dict:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            key = f"{key_prefix}{key_fn(*args, **kwargs)}"
            outcome = await tracker.check(key, ttl_ms)

            if outcome.status == CheckStatus.FAILED.value:
                logger.debug(f"Previous attempt for {key} failed ({outcome.error}), retrying")
                await tracker.clear(key)
                outcome = await tracker.check(key, ttl_ms)

            if outcome.status == CheckStatus.COMPLETED.value:
                logger.debug(f"Key {key} already processed, skipping")
                return outcome.result
            if outcome.status != CheckStatus.NEW.value:
                logger.warning(f"Processing in progress for key {key}")
                raise IdempotencyInProgressError(key, outcome.started_at)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                await tracker.fail(key, str(e) or type(e).__name__)
                raise

            await tracker.complete(key, result if store_result else None)
            return result

        return wrapper

    return decorator
