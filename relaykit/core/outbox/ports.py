"""
Outbox and DLQ ports.

Services and workers depend on these interfaces and receive concrete
implementations through their constructors.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Sequence

from .models import BatchRetryResult, DeadLetterPage, DLQStats, OutboxItem, OutboxStatus


class OutboxPort(ABC):
    """Durable queue of side-effecting messages."""

    @abstractmethod
    async def enqueue(self, message: Any) -> str:
        ...

    @abstractmethod
    async def claim_batch(self, now: datetime, limit: int) -> List[OutboxItem]:
        ...

    @abstractmethod
    async def mark_success(self, item_id: str) -> bool:
        ...

    @abstractmethod
    async def mark_failure(self, item_id: str, error: str, attempts: int) -> Optional[OutboxStatus]:
        ...

    @abstractmethod
    async def list_dead(self, limit: int) -> List[OutboxItem]:
        ...

    @abstractmethod
    async def list_dead_page(self, cursor: Optional[str], limit: int) -> DeadLetterPage:
        ...

    @abstractmethod
    async def requeue(self, ids: Sequence[str], now: Optional[datetime] = None) -> int:
        ...

    @abstractmethod
    async def count_dead(self) -> int:
        ...

    @abstractmethod
    async def purge(self, ids: Sequence[str]) -> int:
        ...


class DLQPort(ABC):
    """Administrative access to dead-lettered outbox items."""

    @abstractmethod
    async def list(
        self,
        kind: Optional[str] = None,
        scope_id: Optional[str] = None,
        error_pattern: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> DeadLetterPage:
        ...

    @abstractmethod
    async def get_by_id(self, item_id: str) -> Optional[OutboxItem]:
        ...

    @abstractmethod
    async def retry(self, item_id: str, operator_id: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    async def retry_batch(self, ids: Sequence[str], operator_id: Optional[str] = None) -> BatchRetryResult:
        ...

    @abstractmethod
    async def purge(self, item_id: str, operator_id: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    async def purge_batch(self, ids: Sequence[str], operator_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def get_stats(self) -> DLQStats:
        ...

    @abstractmethod
    async def count(self, kind: Optional[str] = None, scope_id: Optional[str] = None) -> int:
        ...
