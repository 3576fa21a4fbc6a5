"""
Outbox Lifecycle Management

Runs an outbox processor for the lifetime of an application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from .processor import OutboxProcessor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def outbox_lifespan(processor: Optional[OutboxProcessor]):
    """
    Start `processor` on entry and stop it on exit.

    In multi-instance deployments, set OUTBOX_PROCESSOR_ENABLED=false on
    the instances that should only serve the API; they pass the processor
    as None (or a config with processor_enabled off).

    Usage in FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with outbox_lifespan(app.state.processor):
                yield
    """
    if processor is None or not processor.config.processor_enabled:
        logger.info("Outbox processor disabled: OUTBOX_PROCESSOR_ENABLED=false")
        yield None
        return

    logger.info("Starting outbox processor...")
    await processor.start()
    try:
        yield processor
    finally:
        logger.info("Stopping outbox processor...")
        await processor.stop()
