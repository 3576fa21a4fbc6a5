"""
Outbox Processor Runner

Standalone entry point running the outbox processor as a background
service with graceful shutdown.

Usage:
    python -m relaykit.core.outbox.runner

Environment Variables:
    DATABASE_BACKEND / DATABASE_URL / SQLITE_PATH: storage
    OUTBOX_DISPATCHERS: "package.module:attribute" resolving to a
        dict of kind -> async dispatcher, or a callable returning one
    OUTBOX_POLL_INTERVAL, OUTBOX_BATCH_SIZE, OUTBOX_MAX_RETRIES: see OutboxConfig
    LOG_LEVEL: Logging level (default: INFO)
    LOG_FORMAT: "json" (default) or "text"
    OTEL_ENABLED / OTEL_EXPORTER_OTLP_ENDPOINT: OpenTelemetry export
"""

import asyncio
import importlib
import logging
import signal
import sys
from typing import Dict, Optional

from ..config import OutboxConfig
from ..database import DatabaseAdapter, DatabaseConfig, ensure_schema
from ..observability import init_observability
from .processor import Dispatcher, OutboxProcessor
from .store import OutboxStore

logger = logging.getLogger(__name__)


def load_dispatchers(path: Optional[str]) -> Dict[str, Dispatcher]:
    """
    Resolve a "module:attribute" path to the dispatcher mapping.

    Raises:
        ValueError: the path is missing or malformed
    """
    if not path or ":" not in path:
        raise ValueError("OUTBOX_DISPATCHERS must look like 'package.module:attribute'")

    module_name, attribute = path.split(":", 1)
    target = getattr(importlib.import_module(module_name), attribute)
    if callable(target) and not isinstance(target, dict):
        target = target()
    if not isinstance(target, dict):
        raise ValueError(f"{path} did not resolve to a dict of dispatchers")
    return target


class OutboxRunner:
    """
    Manages the outbox processor lifecycle with graceful shutdown.
    """

    def __init__(self, config: Optional[OutboxConfig] = None):
        self.config = config or OutboxConfig.from_env()
        self.processor: Optional[OutboxProcessor] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            logger.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)

        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self._shutdown_requested = True
        self._shutdown_event.set()

    def request_shutdown(self):
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self, db: Optional[DatabaseAdapter] = None):
        """Run the outbox processor until shutdown is requested."""
        dispatchers = load_dispatchers(self.config.dispatchers_path)

        logger.info("Starting Outbox Processor Runner")
        logger.info(f"  Poll interval: {self.config.poll_interval}s")
        logger.info(f"  Batch size: {self.config.batch_size}")
        logger.info(f"  Max retries: {self.config.max_retries}")
        logger.info(f"  Kinds: {', '.join(sorted(dispatchers))}")

        self._setup_signal_handlers()

        db = db or DatabaseAdapter(DatabaseConfig())
        await db.connect()
        try:
            await ensure_schema(db)
            self.processor = OutboxProcessor(OutboxStore(db, self.config), dispatchers, self.config)
            await self.processor.start()
            logger.info("Outbox Processor is running")

            await self._shutdown_event.wait()
        finally:
            logger.info("Stopping Outbox Processor")
            if self.processor:
                await self.processor.stop()
            await db.disconnect()
            logger.info("Outbox Processor stopped")

    async def health_check(self) -> dict:
        """Return health status for monitoring."""
        running = bool(self.processor and self.processor.running)
        return {
            "status": "healthy" if running else "unhealthy",
            "running": running,
            "shutdown_requested": self._shutdown_requested
        }


async def main():
    """Main entry point."""
    init_observability("relaykit-outbox")

    config = OutboxConfig.from_env()
    if not config.dispatchers_path:
        logger.error("OUTBOX_DISPATCHERS environment variable is required")
        sys.exit(1)

    await OutboxRunner(config).run()


def cli():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
