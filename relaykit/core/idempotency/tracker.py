"""
Idempotency Tracker

Persists one record per idempotency key so that retried operations run
their side effect at most once per attempt window.

State machine per key:

    absent -> in_progress -> completed | failed

An `in_progress` record older than the in-progress timeout belongs to a
worker that presumably died; the next `check` reclaims it. Exactly one
concurrent caller wins each claim: first inserts race on the primary key,
stale reclaims race on a conditional update matching the observed
`started_at`.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..config import IdempotencyConfig
from ..database.adapter import DatabaseAdapter, affected_rows
from ..database.schema import IDEMPOTENCY_TABLE
from ..observability import create_span, record_counter
from .models import CheckStatus, IdempotencyRecord, IdempotencyResult, IdempotencyStatus
from .ports import IdempotencyPort

logger = logging.getLogger(__name__)

# Reads after a lost insert or reclaim race before reporting in_progress
MAX_CLAIM_ROUNDS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyTracker(IdempotencyPort):
    """
    Idempotency records on top of the database adapter.

    Usage:
        tracker = IdempotencyTracker(db)

        outcome = await tracker.check("charge:order-42")
        if outcome.is_new:
            try:
                receipt = await charge(order)
                await tracker.complete("charge:order-42", receipt)
            except Exception as e:
                await tracker.fail("charge:order-42", str(e))
                raise
        elif outcome.status == "completed":
            receipt = outcome.result
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        config: Optional[IdempotencyConfig] = None,
        table: str = IDEMPOTENCY_TABLE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config or IdempotencyConfig()
        self.table = table
        self._clock = clock

    async def check(self, key: str, ttl_ms: Optional[int] = None) -> IdempotencyResult:
        """
        Claim `key` for a new attempt or report its current state.

        Returns:
            NEW when the caller now owns the attempt and must run the
            operation; COMPLETED (with cached result), FAILED (with cached
            error) or IN_PROGRESS otherwise
        """
        with create_span("idempotency.check", {"idempotency.key": key}) as span:
            outcome = await self._check(key, ttl_ms)
            span.set_attribute("idempotency.status", outcome.status)

        record_counter("idempotency_checks_total", 1, {"outcome": outcome.status})
        return outcome

    async def _check(self, key: str, ttl_ms: Optional[int]) -> IdempotencyResult:
        now = self._clock()
        ttl = self.config.ttl_ms if ttl_ms is None else ttl_ms
        expires_at = now + timedelta(milliseconds=ttl)
        stale_before = now - timedelta(milliseconds=self.config.in_progress_timeout_ms)

        record: Optional[IdempotencyRecord] = None
        for _ in range(MAX_CLAIM_ROUNDS):
            record = await self._read(key)

            if record is not None and record.expires_at <= now:
                # Past its TTL: behaves as if the key was never seen
                await self.db.execute(
                    f"DELETE FROM {self.table} WHERE key = $1 AND expires_at <= $2",
                    key, now
                )
                record = None

            if record is None:
                if await self._insert(key, now, expires_at):
                    logger.debug(f"Idempotency key {key} claimed")
                    return IdempotencyResult(status=CheckStatus.NEW, started_at=now)
                continue

            if record.status != IdempotencyStatus.IN_PROGRESS.value:
                return IdempotencyResult.from_record(record)

            if record.started_at >= stale_before:
                return IdempotencyResult.from_record(record)

            if await self._reclaim(record, now, expires_at):
                logger.warning(
                    f"Idempotency key {key} reclaimed from stale attempt started at "
                    f"{record.started_at.isoformat()}"
                )
                return IdempotencyResult(status=CheckStatus.NEW, started_at=now)

        # Still contended after several rounds; someone else holds the key
        if record is not None:
            return IdempotencyResult.from_record(record)
        return IdempotencyResult(status=CheckStatus.IN_PROGRESS, started_at=now)

    async def _read(self, key: str) -> Optional[IdempotencyRecord]:
        row = await self.db.fetchrow(f"SELECT * FROM {self.table} WHERE key = $1", key)
        return IdempotencyRecord.from_row(row) if row else None

    async def _insert(self, key: str, now: datetime, expires_at: datetime) -> bool:
        """Insert a fresh in_progress record; False if the key already exists."""
        try:
            await self.db.execute(
                f"""
                INSERT INTO {self.table}
                    (key, status, started_at, expires_at, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $3, $3)
                """,
                key, IdempotencyStatus.IN_PROGRESS.value, now, expires_at
            )
            return True
        except Exception as e:
            if self.db.is_unique_violation(e):
                logger.debug(f"Idempotency key {key} inserted concurrently, re-reading")
                return False
            raise

    async def _reclaim(self, record: IdempotencyRecord, now: datetime, expires_at: datetime) -> bool:
        """Take over a stale attempt; only the caller that still sees the old started_at wins."""
        status = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET started_at = $1, expires_at = $2, updated_at = $1
            WHERE key = $3 AND status = $4 AND started_at = $5
            """,
            now, expires_at, record.key, IdempotencyStatus.IN_PROGRESS.value, record.started_at
        )
        return affected_rows(status) == 1

    async def complete(self, key: str, result: Any = None) -> bool:
        """
        Mark the attempt completed, caching `result` for later duplicates.

        A None result leaves any previously stored result untouched.
        """
        now = self._clock()
        if result is None:
            status = await self.db.execute(
                f"""
                UPDATE {self.table}
                SET status = $1, completed_at = $2, updated_at = $2
                WHERE key = $3
                """,
                IdempotencyStatus.COMPLETED.value, now, key
            )
        else:
            status = await self.db.execute(
                f"""
                UPDATE {self.table}
                SET status = $1, completed_at = $2, updated_at = $2, result = $3
                WHERE key = $4
                """,
                IdempotencyStatus.COMPLETED.value, now, json.dumps(result, default=str), key
            )
        return affected_rows(status) == 1

    async def fail(self, key: str, error: str) -> bool:
        now = self._clock()
        status = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET status = $1, failed_at = $2, updated_at = $2, error = $3
            WHERE key = $4
            """,
            IdempotencyStatus.FAILED.value, now, error, key
        )
        return affected_rows(status) == 1

    async def clear(self, key: str) -> bool:
        """Forget `key` so the next check starts a fresh attempt."""
        status = await self.db.execute(f"DELETE FROM {self.table} WHERE key = $1", key)
        return affected_rows(status) == 1

    async def get_result(self, key: str) -> Any:
        """Cached result of a completed, unexpired attempt; None otherwise."""
        record = await self._read(key)
        if record is None or record.status != IdempotencyStatus.COMPLETED.value:
            return None
        if record.expires_at <= self._clock():
            return None
        return record.result

    async def prune_expired(self, now: Optional[datetime] = None) -> int:
        """Delete records past their TTL."""
        status = await self.db.execute(
            f"DELETE FROM {self.table} WHERE expires_at <= $1",
            now or self._clock()
        )
        pruned = affected_rows(status)
        if pruned:
            logger.info(f"Pruned {pruned} expired idempotency records")
        return pruned
