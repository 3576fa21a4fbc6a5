"""
relaykit Admin API

FastAPI application exposing the dead letter queue to operators and
optionally running the outbox processor in-process.

Run:
    uvicorn relaykit.api.main:build_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI

from .. import __version__
from ..core.config import DLQConfig, OutboxConfig, load_environment
from ..core.database import DatabaseAdapter, DatabaseConfig, ensure_schema
from ..core.observability import init_observability
from ..core.outbox import DLQManager, OutboxProcessor, OutboxStore, outbox_lifespan
from ..core.outbox.processor import Dispatcher
from ..core.outbox.runner import load_dispatchers
from .routers import dlq_router, health_router

logger = logging.getLogger(__name__)


def create_app(
    db: Optional[DatabaseAdapter] = None,
    outbox_config: Optional[OutboxConfig] = None,
    dlq_config: Optional[DLQConfig] = None,
    dispatchers: Optional[Dict[str, Dispatcher]] = None,
    store: Optional[OutboxStore] = None,
) -> FastAPI:
    """
    Build the application with its services wired on `app.state`.

    The processor only exists when dispatchers are available (passed in,
    or resolved from OUTBOX_DISPATCHERS) and OUTBOX_PROCESSOR_ENABLED is on.
    A prebuilt `store` brings its own database and outbox config.
    """
    load_environment()
    if store is not None:
        db = store.db
        outbox_config = store.config
    db = db or DatabaseAdapter(DatabaseConfig())
    outbox_config = outbox_config or OutboxConfig.from_env()
    store = store or OutboxStore(db, outbox_config)

    if dispatchers is None and outbox_config.dispatchers_path:
        dispatchers = load_dispatchers(outbox_config.dispatchers_path)

    processor = None
    if dispatchers and outbox_config.processor_enabled:
        processor = OutboxProcessor(store, dispatchers, outbox_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await db.connect()
        await ensure_schema(db)
        logger.info(f"relaykit API ready (processor: {'on' if processor else 'off'})")
        try:
            async with outbox_lifespan(processor):
                yield
        finally:
            await db.disconnect()

    app = FastAPI(title="relaykit", version=__version__, lifespan=lifespan)
    app.state.db = db
    app.state.store = store
    app.state.dlq = DLQManager(store, dlq_config or DLQConfig.from_env())
    app.state.processor = processor

    app.include_router(health_router)
    app.include_router(dlq_router)
    return app


def build_app() -> FastAPI:
    """
    Application factory for servers: sets up logging and telemetry from
    the environment, then builds the app.

    Run:
        uvicorn relaykit.api.main:build_app --factory
    """
    init_observability("relaykit-api")
    return create_app()
