"""
Shared test fixtures.

Every test gets a fresh SQLite database in its tmp_path and a manual
clock so backoff, lease and staleness windows can be stepped through
without sleeping.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

from relaykit.core.config import DLQConfig, IdempotencyConfig, OutboxConfig
from relaykit.core.database import DatabaseAdapter, DatabaseConfig, ensure_schema
from relaykit.core.idempotency import IdempotencyTracker
from relaykit.core.outbox import DLQManager, OutboxStore


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 1, 19, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current


def build_email_message(subject: str = "Welcome", scope_id: Optional[str] = None, **payload: Any) -> Dict[str, Any]:
    body = {"to": "user@example.com", "subject": subject, "text": "Hello there"}
    body.update(payload)
    return {"kind": "email", "scope_id": scope_id, "payload": body}


def build_webhook_message(url: str = "https://hooks.example.com/events", scope_id: Optional[str] = None, **payload: Any) -> Dict[str, Any]:
    body = {"url": url, "body": {"event": "order.paid"}}
    body.update(payload)
    return {"kind": "webhook", "scope_id": scope_id, "payload": body}


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
async def db(tmp_path):
    """Connected SQLite adapter with the schema in place."""
    adapter = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=str(tmp_path / "relaykit.db")))
    await adapter.connect()
    await ensure_schema(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def peer_dbs(db):
    """Four more connections to the same database file, one per simulated worker process."""
    peers = [
        DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=db.config.sqlite_path))
        for _ in range(4)
    ]
    for peer in peers:
        await peer.connect()
    yield peers
    for peer in peers:
        await peer.disconnect()


@pytest.fixture
def outbox_config():
    return OutboxConfig(processor_enabled=False)


@pytest.fixture
def store(db, clock, outbox_config):
    return OutboxStore(db, outbox_config, clock=clock, rng=random.Random(7))


@pytest.fixture
def dlq(store):
    return DLQManager(store, DLQConfig())


@pytest.fixture
def tracker(db, clock):
    return IdempotencyTracker(db, IdempotencyConfig(), clock=clock)


async def _make_dead(store: OutboxStore, clock: ManualClock, message: Dict[str, Any], error: str) -> str:
    item_id = await store.enqueue(message)
    assert await store.mark_dead(item_id, error)
    clock.advance(1)
    return item_id


@pytest.fixture
def email_message():
    return build_email_message


@pytest.fixture
def webhook_message():
    return build_webhook_message


@pytest.fixture
def make_dead(store, clock):
    """Enqueue and dead-letter one message; returns its id."""
    async def factory(message: Dict[str, Any], error: str = "smtp timeout") -> str:
        return await _make_dead(store, clock, message, error)
    return factory
