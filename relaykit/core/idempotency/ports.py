"""
Idempotency port.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import IdempotencyResult


class IdempotencyPort(ABC):
    """One live attempt per idempotency key, with cached outcomes."""

    @abstractmethod
    async def check(self, key: str, ttl_ms: Optional[int] = None) -> IdempotencyResult:
        ...

    @abstractmethod
    async def complete(self, key: str, result: Any = None) -> bool:
        ...

    @abstractmethod
    async def fail(self, key: str, error: str) -> bool:
        ...

    @abstractmethod
    async def clear(self, key: str) -> bool:
        ...

    @abstractmethod
    async def get_result(self, key: str) -> Any:
        ...
