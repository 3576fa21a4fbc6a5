"""
Outbox Store

Durable queue of side-effecting messages on top of the database adapter.

Claiming is done one item at a time with a single conditional
UPDATE ... RETURNING per item, so two workers can never both receive the
same item. Retry timing lives entirely in `next_attempt_at`; there is no
scheduler, the next `claim_batch` simply picks up items whose time has come.
"""

import asyncio
import json
import logging
import random
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from ..config import OutboxConfig
from ..database.adapter import DatabaseAdapter, affected_rows
from ..database.schema import OUTBOX_TABLE
from ..observability import create_span, record_counter
from ..pagination import PaginationCursor
from .models import CLAIMABLE_STATUSES, OPEN_STATUSES, DeadLetterPage, OutboxItem, OutboxStatus
from .payloads import parse_outbox_message
from .ports import OutboxPort

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

LIST_DEAD_MAX = 500
PAGE_SIZE_MAX = 50
# Consecutive lost claim races tolerated before giving up on this batch
MAX_CLAIM_MISSES = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_delay(
    attempts: int,
    base_delay_sec: float,
    max_delay_sec: float,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Seconds until the next attempt after `attempts` previous failures.

    delay = min(max_delay_sec, base_delay_sec * 2^attempts), plus up to 10%
    additive jitter. The result is within [delay, delay * 1.1].
    """
    exponent = min(max(attempts, 0), 64)
    delay = min(float(max_delay_sec), float(base_delay_sec) * (2 ** exponent))
    jitter = delay * (rng or random).uniform(0, 0.1)
    return delay + jitter


def placeholders(start: int, count: int) -> str:
    """`$start, $start+1, ...` for an IN (...) list."""
    return ", ".join(f"${n}" for n in range(start, start + count))


def regex_or_literal(pattern: str) -> str:
    """Use `pattern` as a regex when it compiles, else match it literally."""
    try:
        re.compile(pattern)
        return pattern
    except re.error:
        return re.escape(pattern)


class OutboxStore(OutboxPort):
    """
    Outbox persistence.

    Usage:
        store = OutboxStore(db, OutboxConfig.from_env())
        item_id = await store.enqueue({"kind": "email", "payload": {...}})

        for item in await store.claim_batch(utcnow(), 10):
            try:
                await send(item)
                await store.mark_success(item.id)
            except Exception as e:
                await store.mark_failure(item.id, str(e), item.attempts)
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        config: Optional[OutboxConfig] = None,
        table: str = OUTBOX_TABLE,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.config = config or OutboxConfig()
        self.table = table
        self._clock = clock
        self._rng = rng or random.Random()

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, message: Any) -> str:
        """
        Validate and insert one message as `queued`, due immediately.

        Args:
            message: dict with `kind`, `payload` and optional `scope_id`,
                or an already-validated message model

        Returns:
            The new item id

        Raises:
            PayloadValidationError: the payload does not match its kind
        """
        parsed = parse_outbox_message(message)
        return await self._insert(parsed)

    async def enqueue_many(self, messages: Sequence[Any]) -> List[str]:
        """Validate every message first, then insert them in order."""
        parsed = [parse_outbox_message(m) for m in messages]
        return [await self._insert(p) for p in parsed]

    async def _insert(self, message: Any) -> str:
        item_id = str(uuid4())
        now = self.now()
        await self.db.execute(
            f"""
            INSERT INTO {self.table}
                (id, scope_id, kind, payload, status, attempts,
                 next_attempt_at, last_error, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, 0, $6, NULL, $6, $6)
            """,
            item_id,
            message.scope_id,
            message.kind,
            json.dumps(message.payload_dict(), separators=(",", ":")),
            OutboxStatus.QUEUED.value,
            now,
        )
        record_counter("outbox_enqueued_total", 1, {"kind": message.kind})
        logger.debug(f"Enqueued outbox item {item_id} ({message.kind})")
        return item_id

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _claim_sql(self) -> str:
        # SKIP LOCKED lets concurrent PostgreSQL workers move past rows that
        # another claim is already updating instead of queueing behind them.
        lock = " FOR UPDATE SKIP LOCKED" if self.db.is_postgres else ""
        return f"""
            UPDATE {self.table}
            SET status = $1, updated_at = $2
            WHERE id = (
                SELECT id FROM {self.table}
                WHERE status IN ($3, $4) AND next_attempt_at <= $5
                ORDER BY next_attempt_at ASC, id ASC
                LIMIT 1{lock}
            )
            AND status IN ($3, $4) AND next_attempt_at <= $5
            RETURNING *
        """

    async def _has_due(self, now: datetime) -> bool:
        row = await self.db.fetchrow(
            f"""
            SELECT id FROM {self.table}
            WHERE status IN ($1, $2) AND next_attempt_at <= $3
            LIMIT 1
            """,
            *CLAIMABLE_STATUSES, now
        )
        return row is not None

    async def claim_batch(self, now: datetime, limit: int) -> List[OutboxItem]:
        """
        Lease up to `limit` due items, oldest-due first.

        Items move to `delivering`. The loop stops early once nothing due
        remains. `limit` is capped at claim_limit_max; zero or less claims
        nothing.
        """
        limit = min(int(limit), self.config.claim_limit_max)
        if limit <= 0:
            return []
        sql = self._claim_sql()
        claimed: List[OutboxItem] = []
        misses = 0

        with create_span("outbox.claim_batch", {"outbox.limit": limit}) as span:
            while len(claimed) < limit:
                row = await self.db.fetchrow_returning(
                    sql,
                    OutboxStatus.DELIVERING.value,
                    self.now(),
                    *CLAIMABLE_STATUSES,
                    now,
                )
                if row is not None:
                    claimed.append(OutboxItem.from_row(row))
                    misses = 0
                    continue

                # Lost a race for the candidate, or the queue is drained
                if not await self._has_due(now):
                    break
                misses += 1
                if misses >= MAX_CLAIM_MISSES:
                    logger.debug(f"Giving up claim loop after {misses} contended attempts")
                    break
                await asyncio.sleep(0)

            span.set_attribute("outbox.claimed", len(claimed))

        if claimed:
            record_counter("outbox_claimed_total", len(claimed))
            logger.debug(f"Claimed {len(claimed)} outbox items")
        return claimed

    async def mark_success(self, item_id: str) -> bool:
        """Mark an item delivered. Delivered and dead items are left alone."""
        status = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET status = $1, last_error = NULL, updated_at = $2
            WHERE id = $3 AND status IN ($4, $5, $6)
            """,
            OutboxStatus.DELIVERED.value, self.now(), item_id, *OPEN_STATUSES
        )
        updated = affected_rows(status) == 1
        if updated:
            record_counter("outbox_delivered_total")
        return updated

    async def mark_failure(self, item_id: str, error: str, attempts: int) -> Optional[OutboxStatus]:
        """
        Record a failed delivery attempt.

        `attempts` is the number of failures before this one (the item's
        `attempts` when it was claimed). The stored counter is incremented,
        `next_attempt_at` pushed out by exponential backoff with jitter, and
        the item dead-lettered once `attempts >= max_retries`.

        Returns:
            The new status, or None when the item is missing, delivered or dead
        """
        now = self.now()
        delay = backoff_delay(
            attempts, self.config.base_delay_sec, self.config.max_delay_sec, self._rng
        )
        next_status = OutboxStatus.DEAD if attempts >= self.config.max_retries else OutboxStatus.FAILED

        row = await self.db.fetchrow_returning(
            f"""
            UPDATE {self.table}
            SET status = $1,
                last_error = $2,
                next_attempt_at = $3,
                attempts = attempts + 1,
                updated_at = $4
            WHERE id = $5 AND status IN ($6, $7, $8)
            RETURNING id, kind, attempts
            """,
            next_status.value,
            error,
            now + timedelta(seconds=delay),
            now,
            item_id,
            *OPEN_STATUSES,
        )
        if row is None:
            return None

        record_counter("outbox_failed_total", 1, {"kind": row["kind"]})
        if next_status == OutboxStatus.DEAD:
            record_counter("dlq_entries_total", 1, {"kind": row["kind"]})
            logger.error(
                f"Outbox item {item_id} moved to dead letter after {row['attempts']} attempts: {error}"
            )
        else:
            logger.warning(
                f"Outbox item {item_id} failed (attempt {row['attempts']}), "
                f"retry in {delay:.1f}s: {error}"
            )
        return next_status

    async def mark_dead(self, item_id: str, error: str) -> bool:
        """Dead-letter an item immediately (permanent failure)."""
        row = await self.db.fetchrow_returning(
            f"""
            UPDATE {self.table}
            SET status = $1, last_error = $2, attempts = attempts + 1, updated_at = $3
            WHERE id = $4 AND status <> $1
            RETURNING id, kind
            """,
            OutboxStatus.DEAD.value, error, self.now(), item_id
        )
        if row is None:
            return False
        record_counter("outbox_failed_total", 1, {"kind": row["kind"]})
        record_counter("dlq_entries_total", 1, {"kind": row["kind"]})
        logger.error(f"Outbox item {item_id} dead-lettered: {error}")
        return True

    async def release_expired_leases(
        self,
        now: Optional[datetime] = None,
        lease_timeout_sec: Optional[float] = None,
    ) -> int:
        """
        Return items stuck in `delivering` past the lease timeout to `queued`.

        An expired lease counts as a failed attempt: `attempts` is
        incremented and an item that had already used up its retries goes
        to `dead` instead.
        """
        now = now or self.now()
        timeout = self.config.lease_timeout_sec if lease_timeout_sec is None else lease_timeout_sec
        rows = await self.db.fetch_returning(
            f"""
            UPDATE {self.table}
            SET status = CASE WHEN attempts >= $1 THEN $2 ELSE $3 END,
                attempts = attempts + 1,
                last_error = $4,
                next_attempt_at = $5,
                updated_at = $5
            WHERE status = $6 AND updated_at <= $7
            RETURNING id, kind, status
            """,
            self.config.max_retries,
            OutboxStatus.DEAD.value,
            OutboxStatus.QUEUED.value,
            f"lease expired after {timeout:g}s",
            now,
            OutboxStatus.DELIVERING.value,
            now - timedelta(seconds=timeout),
        )
        dead = [row for row in rows if row["status"] == OutboxStatus.DEAD.value]
        for row in dead:
            record_counter("dlq_entries_total", 1, {"kind": row["kind"]})
            logger.error(f"Outbox item {row['id']} dead-lettered after repeated lease expiry")
        if rows:
            logger.warning(
                f"Released {len(rows)} outbox items with expired leases ({len(dead)} dead-lettered)"
            )
        return len(rows)
    async def release(self, ids: Sequence[str]) -> int:
        """Hand claimed but undispatched items back to `queued`."""
        ids = list(ids)
        if not ids:
            return 0
        status = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET status = $1, updated_at = $2
            WHERE status = $3 AND id IN ({placeholders(4, len(ids))})
            """,
            OutboxStatus.QUEUED.value, self.now(), OutboxStatus.DELIVERING.value, *ids
        )
        return affected_rows(status)

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    async def get(self, item_id: str) -> Optional[OutboxItem]:
        row = await self.db.fetchrow(f"SELECT * FROM {self.table} WHERE id = $1", item_id)
        return OutboxItem.from_row(row) if row else None

    async def list_dead(self, limit: int) -> List[OutboxItem]:
        """Most recently dead-lettered items first."""
        limit = max(1, min(int(limit), LIST_DEAD_MAX))
        rows = await self.db.fetch(
            f"""
            SELECT * FROM {self.table}
            WHERE status = $1
            ORDER BY updated_at DESC, id DESC
            LIMIT $2
            """,
            OutboxStatus.DEAD.value, limit
        )
        return [OutboxItem.from_row(row) for row in rows]

    async def list_dead_page(self, cursor: Optional[str], limit: int) -> DeadLetterPage:
        return await self.find_dead_page(cursor=cursor, limit=limit)

    def dead_filter(
        self,
        kind: Optional[str] = None,
        scope_id: Optional[str] = None,
        error_pattern: Optional[str] = None,
    ) -> Tuple[List[str], List[Any]]:
        """WHERE conditions and parameters selecting (a subset of) the dead set."""
        conditions = ["status = $1"]
        params: List[Any] = [OutboxStatus.DEAD.value]
        if kind:
            params.append(kind)
            conditions.append(f"kind = ${len(params)}")
        if scope_id:
            params.append(scope_id)
            conditions.append(f"scope_id = ${len(params)}")
        if error_pattern:
            params.append(regex_or_literal(error_pattern))
            conditions.append(f"last_error {self.db.regex_operator} ${len(params)}")
        return conditions, params

    async def find_dead_page(
        self,
        cursor: Optional[str] = None,
        limit: int = 20,
        kind: Optional[str] = None,
        scope_id: Optional[str] = None,
        error_pattern: Optional[str] = None,
        max_limit: int = PAGE_SIZE_MAX,
    ) -> DeadLetterPage:
        """
        Seek-paginated dead items ordered by (updated_at DESC, id DESC).

        An invalid cursor restarts from the first page. `prev_cursor` is set
        whenever a cursor was supplied and the page is not empty.
        """
        limit = max(1, min(int(limit), max_limit))
        conditions, params = self.dead_filter(kind, scope_id, error_pattern)

        position = PaginationCursor.decode(cursor)
        if position is not None:
            params.extend([position.sort_value, position.tiebreak_id])
            s, i = len(params) - 1, len(params)
            conditions.append(f"(updated_at < ${s} OR (updated_at = ${s} AND id < ${i}))")

        params.append(limit + 1)
        rows = await self.db.fetch(
            f"""
            SELECT * FROM {self.table}
            WHERE {' AND '.join(conditions)}
            ORDER BY updated_at DESC, id DESC
            LIMIT ${len(params)}
            """,
            *params
        )

        items = [OutboxItem.from_row(row) for row in rows[:limit]]
        page = DeadLetterPage(items=items)
        if len(rows) > limit and items:
            page.next_cursor = PaginationCursor.for_item(items[-1]).encode()
        if position is not None and items:
            page.prev_cursor = PaginationCursor.for_item(items[0]).encode()
        return page

    async def requeue(self, ids: Sequence[str], now: Optional[datetime] = None) -> int:
        """
        Move dead or failed items back to `queued`, due at `now`.

        Attempts are kept; use the DLQ manager's retry for a full reset.
        """
        ids = list(ids)
        if not ids:
            return 0
        now = now or self.now()
        status = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET status = $1, next_attempt_at = $2, last_error = NULL, updated_at = $3
            WHERE status IN ($4, $5) AND id IN ({placeholders(6, len(ids))})
            """,
            OutboxStatus.QUEUED.value,
            now,
            self.now(),
            OutboxStatus.DEAD.value,
            OutboxStatus.FAILED.value,
            *ids
        )
        moved = affected_rows(status)
        logger.info(f"Requeued {moved} of {len(ids)} outbox items")
        return moved

    async def count_dead(self) -> int:
        count = await self.db.fetchval(
            f"SELECT COUNT(*) AS count FROM {self.table} WHERE status = $1",
            OutboxStatus.DEAD.value
        )
        return int(count or 0)

    async def purge(self, ids: Sequence[str]) -> int:
        """Delete the given items that are dead. Other ids are skipped."""
        ids = list(ids)
        if not ids:
            return 0
        status = await self.db.execute(
            f"DELETE FROM {self.table} WHERE status = $1 AND id IN ({placeholders(2, len(ids))})",
            OutboxStatus.DEAD.value, *ids
        )
        return affected_rows(status)

    async def status_counts(self) -> Dict[str, int]:
        """Item count per status, every status present."""
        rows = await self.db.fetch(
            f"SELECT status, COUNT(*) AS count FROM {self.table} GROUP BY status"
        )
        counts = {status.value: 0 for status in OutboxStatus}
        for row in rows:
            counts[row["status"]] = int(row["count"])
        return counts
