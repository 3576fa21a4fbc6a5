"""
Outbox Processor

Background worker that claims due outbox items, hands each one to the
dispatcher registered for its kind and reports the outcome back to the
store. Delivery itself is always the dispatcher's job.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import OutboxConfig
from ..errors import PermanentDispatchError, UnknownKindError
from ..observability import create_span, record_histogram
from .models import OutboxItem
from .store import OutboxStore

logger = logging.getLogger(__name__)

Dispatcher = Callable[[OutboxItem], Awaitable[Any]]

MAX_ERROR_LENGTH = 1000


def _error_text(error: BaseException) -> str:
    text = str(error) or type(error).__name__
    return text[:MAX_ERROR_LENGTH]


class OutboxProcessor:
    """
    Processes outbox items.

    Features:
    - Polls the store for due items
    - Routes each item to the dispatcher for its kind
    - Transient failures are retried with backoff, permanent ones
      dead-lettered immediately
    - Releases claims it could not dispatch before its deadline
    """

    def __init__(
        self,
        store: OutboxStore,
        dispatchers: Dict[str, Dispatcher],
        config: Optional[OutboxConfig] = None,
    ):
        self.store = store
        self.dispatchers = dict(dispatchers)
        self.config = config or store.config
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the polling loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"OutboxProcessor started (kinds: {', '.join(sorted(self.dispatchers)) or 'none'})")

    async def stop(self):
        """Stop the polling loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("OutboxProcessor stopped")

    async def _run(self):
        """Main processing loop."""
        while self._running:
            try:
                processed = await self.process_batch()
                if processed == 0:
                    await asyncio.sleep(self.config.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"OutboxProcessor error: {e}", exc_info=True)
                await asyncio.sleep(self.config.poll_interval)

    async def process_batch(
        self,
        now: Optional[datetime] = None,
        deadline: Optional[datetime] = None,
    ) -> int:
        """
        Claim and dispatch one batch.

        Args:
            now: Claim items due at or before this time (default: store clock)
            deadline: Stop dispatching once the store clock reaches this;
                remaining claims are released back to the queue

        Returns:
            Number of items dispatched (successfully or not)
        """
        now = now or self.store.now()
        await self.store.release_expired_leases(now)

        items = await self.store.claim_batch(now, self.config.batch_size)
        if not items:
            return 0

        dispatched = 0
        with create_span("outbox.process_batch", {"outbox.claimed": len(items)}):
            for index, item in enumerate(items):
                if deadline is not None and self.store.now() >= deadline:
                    await self._release(items[index:], "deadline reached")
                    break
                try:
                    await self._dispatch(item)
                except asyncio.CancelledError:
                    await self._release(items[index + 1:], "processor cancelled")
                    raise
                dispatched += 1

        return dispatched

    async def _release(self, items: List[OutboxItem], reason: str):
        if not items:
            return
        released = await self.store.release([item.id for item in items])
        logger.info(f"Released {released} undispatched outbox items: {reason}")

    async def _dispatch(self, item: OutboxItem):
        """Deliver a single item and record the outcome."""
        dispatcher = self.dispatchers.get(item.kind)
        started = time.monotonic()

        with create_span("outbox.dispatch", {"outbox.item_id": item.id, "outbox.kind": item.kind}):
            try:
                if dispatcher is None:
                    raise UnknownKindError(item.kind)
                await dispatcher(item)
            except PermanentDispatchError as e:
                await self.store.mark_dead(item.id, _error_text(e))
                outcome = "dead"
            except Exception as e:
                # Anything not known to be permanent is worth another attempt
                status = await self.store.mark_failure(item.id, _error_text(e), item.attempts)
                outcome = status.value if status else "failed"
            else:
                await self.store.mark_success(item.id)
                outcome = "delivered"
                logger.debug(f"Delivered outbox item {item.id}")
            finally:
                record_histogram(
                    "outbox_dispatch_duration_seconds",
                    time.monotonic() - started,
                    {"kind": item.kind},
                )

        return outcome
