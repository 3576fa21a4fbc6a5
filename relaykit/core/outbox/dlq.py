"""
Dead Letter Queue (DLQ) Management

Administrative access to outbox items that exhausted their retries.
Works directly on the outbox table, scoped to `status = 'dead'`.

Every mutating call reports per-target outcomes instead of raising.
Only storage unavailability propagates.
"""

import logging
import re
from datetime import timedelta
from typing import List, Optional, Sequence

from ..config import DLQConfig
from ..database.adapter import CONNECTION_ERRORS, affected_rows
from ..observability import add_event_to_span, traced
from .models import (
    BatchFailure,
    BatchRetryResult,
    DeadLetterPage,
    DLQAction,
    DLQStats,
    OutboxItem,
    OutboxStatus,
    parse_db_datetime,
)
from .ports import DLQPort
from .store import OutboxStore

logger = logging.getLogger(__name__)

NOT_FOUND_OR_NOT_DEAD = "not found or not dead"
BULK_LIMIT = 1000


class DLQManager(DLQPort):
    """
    Manages the Dead Letter Queue.

    Responsibilities:
    - Browse and filter dead items
    - Retry dead items (attempts reset to 0)
    - Purge dead items
    - Aggregate DLQ statistics
    """

    def __init__(self, store: OutboxStore, config: Optional[DLQConfig] = None):
        self.store = store
        self.db = store.db
        self.table = store.table
        self.config = config or DLQConfig()

    async def list(
        self,
        kind: Optional[str] = None,
        scope_id: Optional[str] = None,
        error_pattern: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> DeadLetterPage:
        """
        Browse dead items, newest first.

        Args:
            kind: Only items of this kind
            scope_id: Only items of this tenant
            error_pattern: Case-insensitive regex against last_error.
                Patterns that do not compile are matched literally.
            cursor: Opaque cursor from a previous page; invalid cursors
                restart from the first page
            limit: Page size, clamped to [1, max_page_size]
        """
        try:
            return await self._list(kind, scope_id, error_pattern, cursor, limit)
        except Exception as e:
            # PostgreSQL regexes are not Python regexes; a pattern Python
            # accepts can still be rejected by the server.
            if not error_pattern or not self.db.is_invalid_regex(e):
                raise
            logger.warning(f"Error pattern {error_pattern!r} rejected by the database, matching literally")
            return await self._list(kind, scope_id, re.escape(error_pattern), cursor, limit)

    async def _list(
        self,
        kind: Optional[str],
        scope_id: Optional[str],
        error_pattern: Optional[str],
        cursor: Optional[str],
        limit: int,
    ) -> DeadLetterPage:
        page = await self.store.find_dead_page(
            cursor=cursor,
            limit=limit,
            kind=kind,
            scope_id=scope_id,
            error_pattern=error_pattern,
            max_limit=self.config.max_page_size,
        )
        page.total_count = await self._count(kind, scope_id, error_pattern)
        return page

    async def get_by_id(self, item_id: str) -> Optional[OutboxItem]:
        row = await self.db.fetchrow(
            f"SELECT * FROM {self.table} WHERE id = $1 AND status = $2",
            item_id, OutboxStatus.DEAD.value
        )
        return OutboxItem.from_row(row) if row else None

    async def retry(self, item_id: str, operator_id: Optional[str] = None) -> bool:
        """
        Reset a dead item for delivery: queued, attempts 0, due now.

        Returns:
            True if a dead item with this id existed
        """
        now = self.store.now()
        result = await self.db.execute(
            f"""
            UPDATE {self.table}
            SET status = $1,
                attempts = 0,
                next_attempt_at = $2,
                last_error = NULL,
                updated_at = $2
            WHERE id = $3 AND status = $4
            """,
            OutboxStatus.QUEUED.value, now, item_id, OutboxStatus.DEAD.value
        )

        success = affected_rows(result) == 1
        if success:
            self._log_action(item_id, DLQAction.RETRY, operator_id)
        return success

    @traced("dlq.retry_batch")
    async def retry_batch(self, ids: Sequence[str], operator_id: Optional[str] = None) -> BatchRetryResult:
        """Retry each id independently and report every outcome."""
        result = BatchRetryResult()
        for item_id in ids:
            try:
                if await self.retry(item_id, operator_id):
                    result.succeeded.append(item_id)
                else:
                    result.failed.append(BatchFailure(id=item_id, error=NOT_FOUND_OR_NOT_DEAD))
            except CONNECTION_ERRORS:
                raise
            except Exception as e:
                logger.warning(f"DLQ retry failed for {item_id}: {e}")
                result.failed.append(BatchFailure(id=item_id, error=str(e) or type(e).__name__))

        logger.info(
            f"DLQ retry batch: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed by {operator_id}"
        )
        return result

    async def purge(self, item_id: str, operator_id: Optional[str] = None) -> bool:
        """Permanently delete one dead item."""
        deleted = await self.store.purge([item_id]) == 1
        if deleted:
            self._log_action(item_id, DLQAction.PURGE, operator_id)
        return deleted

    async def purge_batch(self, ids: Sequence[str], operator_id: Optional[str] = None) -> int:
        """Delete the dead items among `ids`; returns how many were removed."""
        count = 0
        for item_id in ids:
            try:
                if await self.purge(item_id, operator_id):
                    count += 1
            except CONNECTION_ERRORS:
                raise
            except Exception as e:
                logger.warning(f"DLQ purge failed for {item_id}: {e}")
        return count

    async def retry_all(
        self,
        kind: Optional[str] = None,
        limit: int = BULK_LIMIT,
        operator_id: Optional[str] = None,
    ) -> BatchRetryResult:
        """Retry up to `limit` dead items, newest first."""
        ids = await self._dead_ids(kind, limit)
        return await self.retry_batch(ids, operator_id)

    async def purge_all(
        self,
        kind: Optional[str] = None,
        limit: int = BULK_LIMIT,
        operator_id: Optional[str] = None,
    ) -> int:
        """Purge up to `limit` dead items, newest first."""
        ids = await self._dead_ids(kind, limit)
        if not ids:
            return 0
        count = await self.store.purge(ids)
        logger.info(f"DLQ purge all: removed {count} entries by {operator_id}")
        return count

    async def purge_older_than(self, days: int = 30, operator_id: Optional[str] = None) -> int:
        """Purge dead items that have been dead for more than `days` days."""
        cutoff = self.store.now() - timedelta(days=days)
        result = await self.db.execute(
            f"DELETE FROM {self.table} WHERE status = $1 AND updated_at < $2",
            OutboxStatus.DEAD.value, cutoff
        )
        count = affected_rows(result)
        logger.info(f"DLQ purged {count} entries older than {days} days by {operator_id}")
        return count

    @traced("dlq.get_stats")
    async def get_stats(self) -> DLQStats:
        """Aggregate statistics, computed by grouping queries."""
        dead = OutboxStatus.DEAD.value

        totals = await self.db.fetchrow(
            f"""
            SELECT COUNT(*) AS count, MIN(updated_at) AS oldest, MAX(updated_at) AS newest
            FROM {self.table}
            WHERE status = $1
            """,
            dead
        )

        by_kind = await self.db.fetch(
            f"""
            SELECT kind, COUNT(*) AS count
            FROM {self.table}
            WHERE status = $1
            GROUP BY kind
            ORDER BY count DESC, kind ASC
            """,
            dead
        )

        by_prefix = await self.db.fetch(
            f"""
            SELECT SUBSTR(COALESCE(last_error, ''), 1, $2) AS prefix, COUNT(*) AS count
            FROM {self.table}
            WHERE status = $1
            GROUP BY 1
            ORDER BY count DESC, prefix ASC
            LIMIT $3
            """,
            dead, self.config.error_prefix_length, self.config.top_errors
        )

        return DLQStats(
            total_dead=int(totals["count"]) if totals else 0,
            oldest_dead_at=parse_db_datetime(totals["oldest"]) if totals else None,
            newest_dead_at=parse_db_datetime(totals["newest"]) if totals else None,
            by_kind={row["kind"]: int(row["count"]) for row in by_kind},
            by_error_prefix={row["prefix"]: int(row["count"]) for row in by_prefix},
        )

    async def count(self, kind: Optional[str] = None, scope_id: Optional[str] = None) -> int:
        return await self._count(kind, scope_id)

    async def _count(
        self,
        kind: Optional[str] = None,
        scope_id: Optional[str] = None,
        error_pattern: Optional[str] = None,
    ) -> int:
        conditions, params = self.store.dead_filter(kind, scope_id, error_pattern)
        value = await self.db.fetchval(
            f"SELECT COUNT(*) AS count FROM {self.table} WHERE {' AND '.join(conditions)}",
            *params
        )
        return int(value or 0)

    async def _dead_ids(self, kind: Optional[str], limit: int) -> List[str]:
        conditions, params = self.store.dead_filter(kind=kind)
        params.append(max(1, min(int(limit), BULK_LIMIT)))
        rows = await self.db.fetch(
            f"""
            SELECT id FROM {self.table}
            WHERE {' AND '.join(conditions)}
            ORDER BY updated_at DESC, id DESC
            LIMIT ${len(params)}
            """,
            *params
        )
        return [str(row["id"]) for row in rows]

    def _log_action(self, item_id: str, action: DLQAction, operator_id: Optional[str]):
        """Audit line for an administrative action."""
        logger.info(
            f"DLQ action: {action.value} on {item_id} by {operator_id}",
            extra={"dlq_action": action.value, "item_id": item_id, "operator_id": operator_id},
        )
        add_event_to_span(f"dlq.{action.value}", {"outbox.item_id": item_id})
