"""
Idempotency Models
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ..outbox.models import parse_db_datetime, parse_db_json


class IdempotencyStatus(str, Enum):
    """Persisted state of an idempotency key."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckStatus(str, Enum):
    """Outcome of `check`. NEW means the caller now owns the attempt."""
    NEW = "new"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyRecord(BaseModel):
    """One row of the idempotency table."""

    model_config = ConfigDict(use_enum_values=True)

    key: str
    status: IdempotencyStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "IdempotencyRecord":
        return cls(
            key=row["key"],
            status=row["status"],
            started_at=parse_db_datetime(row["started_at"]),
            completed_at=parse_db_datetime(row.get("completed_at")),
            failed_at=parse_db_datetime(row.get("failed_at")),
            result=parse_db_json(row.get("result")),
            error=row.get("error"),
            expires_at=parse_db_datetime(row["expires_at"]),
            created_at=parse_db_datetime(row["created_at"]),
            updated_at=parse_db_datetime(row["updated_at"]),
        )


class IdempotencyResult(BaseModel):
    """What a caller of `check` learns about a key."""

    model_config = ConfigDict(use_enum_values=True)

    status: CheckStatus
    result: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def is_new(self) -> bool:
        return self.status == CheckStatus.NEW.value

    @classmethod
    def from_record(cls, record: IdempotencyRecord) -> "IdempotencyResult":
        if record.status == IdempotencyStatus.COMPLETED.value:
            return cls(status=CheckStatus.COMPLETED, result=record.result, completed_at=record.completed_at)
        if record.status == IdempotencyStatus.FAILED.value:
            return cls(status=CheckStatus.FAILED, error=record.error or "Unknown error", failed_at=record.failed_at)
        return cls(status=CheckStatus.IN_PROGRESS, started_at=record.started_at)
