"""
Integration Test Fixtures
"""

import pytest
from httpx import AsyncClient, ASGITransport

from relaykit.api.main import create_app
from relaykit.core.config import DLQConfig, OutboxConfig


@pytest.fixture
def app(db, monkeypatch):
    """Application wired to the test database, processor off."""
    monkeypatch.setenv("AUTH_REQUIRED", "false")
    return create_app(
        db=db,
        outbox_config=OutboxConfig(processor_enabled=False),
        dlq_config=DLQConfig(),
        dispatchers={},
    )


@pytest.fixture
async def client(app):
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def seed_dead(app):
    """Dead-letter a message through the app's own store; returns its id."""
    store = app.state.store

    async def factory(message, error="smtp timeout"):
        item_id = await store.enqueue(message)
        assert await store.mark_dead(item_id, error)
        return item_id

    return factory
