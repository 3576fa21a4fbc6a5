"""
Outbox Models

Rows of the outbox table and the result shapes returned by the
store and the DLQ manager.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def parse_db_datetime(value: Any) -> Optional[datetime]:
    """Normalize a timestamp column (datetime from asyncpg, text from SQLite)."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_db_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class OutboxStatus(str, Enum):
    """Status of an outbox item."""
    QUEUED = "queued"
    DELIVERING = "delivering"  # Leased by a worker
    DELIVERED = "delivered"
    FAILED = "failed"  # Waiting for backoff to elapse
    DEAD = "dead"  # Exceeded max retries


CLAIMABLE_STATUSES = (OutboxStatus.QUEUED.value, OutboxStatus.FAILED.value)
# Statuses a delivery outcome may still be recorded against
OPEN_STATUSES = (
    OutboxStatus.DELIVERING.value,
    OutboxStatus.QUEUED.value,
    OutboxStatus.FAILED.value,
)


class OutboxItem(BaseModel):
    """An item in the outbox table."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    scope_id: Optional[str] = None
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    status: OutboxStatus = OutboxStatus.QUEUED
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: datetime = Field(default_factory=_utcnow)
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutboxItem":
        return cls(
            id=str(row["id"]),
            scope_id=row.get("scope_id"),
            kind=row["kind"],
            payload=parse_db_json(row["payload"]) or {},
            status=row["status"],
            attempts=row["attempts"],
            next_attempt_at=parse_db_datetime(row["next_attempt_at"]),
            last_error=row.get("last_error"),
            created_at=parse_db_datetime(row["created_at"]),
            updated_at=parse_db_datetime(row["updated_at"]),
        )


class DeadLetterPage(BaseModel):
    """One page of dead items, newest first."""

    items: List[OutboxItem] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    total_count: Optional[int] = None


class BatchFailure(BaseModel):
    id: str
    error: str


class BatchRetryResult(BaseModel):
    """Per-id outcome of a batch retry. Never collapsed into one error."""

    succeeded: List[str] = Field(default_factory=list)
    failed: List[BatchFailure] = Field(default_factory=list)


class DLQStats(BaseModel):
    """Aggregate view of the dead set."""

    total_dead: int = 0
    oldest_dead_at: Optional[datetime] = None
    newest_dead_at: Optional[datetime] = None
    by_kind: Dict[str, int] = Field(default_factory=dict)
    by_error_prefix: Dict[str, int] = Field(default_factory=dict)


class DLQAction(str, Enum):
    """Actions that can be taken on DLQ entries."""
    RETRY = "retry"
    PURGE = "purge"
