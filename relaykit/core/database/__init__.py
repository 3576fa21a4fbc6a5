"""
Database access for relaykit.

Provides one async interface over SQLite (development and tests) and
PostgreSQL (production).

Usage:
    from relaykit.core.database import DatabaseAdapter, DatabaseConfig, ensure_schema

    db = DatabaseAdapter(DatabaseConfig(backend="postgresql"))
    await db.connect()
    await ensure_schema(db)

    rows = await db.fetch("SELECT * FROM outbox_items WHERE status = $1", "dead")
"""

from .adapter import (
    CONNECTION_ERRORS,
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    affected_rows,
    to_db_timestamp,
)
from .schema import IDEMPOTENCY_TABLE, OUTBOX_TABLE, ensure_schema

__all__ = [
    "CONNECTION_ERRORS",
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "affected_rows",
    "to_db_timestamp",
    "IDEMPOTENCY_TABLE",
    "OUTBOX_TABLE",
    "ensure_schema",
]
