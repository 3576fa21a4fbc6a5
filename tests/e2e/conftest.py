"""
E2E Test Fixtures

Provides an application wired to the test clock with an outbox processor
that tests drive batch by batch.
"""

from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport

from relaykit.api.main import create_app
from relaykit.core.config import DLQConfig, OutboxConfig
from relaykit.core.errors import TransientDispatchError


class FlakyProvider:
    """Email provider double that fails until told to recover."""

    def __init__(self):
        self.healthy = False
        self.sent = []

    async def __call__(self, item):
        if not self.healthy:
            raise TransientDispatchError("smtp timeout")
        self.sent.append(item)


@pytest.fixture
def outbox_config():
    # Processor enabled so the app builds one; the lifespan never runs
    # under ASGITransport, so it is never started in the background.
    return OutboxConfig()


@pytest.fixture
def provider():
    return FlakyProvider()


@pytest.fixture
def app(store, provider, monkeypatch):
    monkeypatch.setenv("AUTH_REQUIRED", "false")
    return create_app(store=store, dlq_config=DLQConfig(), dispatchers={"email": provider})


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
