"""
Schema for the outbox and idempotency tables.

Both statements sets are idempotent (IF NOT EXISTS) so `ensure_schema`
can run on every startup.
"""

import logging

from .adapter import DatabaseAdapter

logger = logging.getLogger(__name__)

OUTBOX_TABLE = "outbox_items"
IDEMPOTENCY_TABLE = "idempotency_records"


POSTGRES_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {outbox} (
  id TEXT PRIMARY KEY,
  scope_id TEXT,
  kind TEXT NOT NULL,
  payload JSONB NOT NULL,
  status TEXT NOT NULL,
  attempts INTEGER NOT NULL DEFAULT 0,
  next_attempt_at TIMESTAMPTZ NOT NULL,
  last_error TEXT,
  created_at TIMESTAMPTZ NOT NULL,
  updated_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_{outbox}_claim ON {outbox}(status, next_attempt_at);
CREATE INDEX IF NOT EXISTS idx_{outbox}_browse ON {outbox}(status, updated_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_{outbox}_kind ON {outbox}(status, kind);

CREATE TABLE IF NOT EXISTS {idempotency} (
  key TEXT PRIMARY KEY,
  status TEXT NOT NULL,
  started_at TIMESTAMPTZ NOT NULL,
  completed_at TIMESTAMPTZ,
  failed_at TIMESTAMPTZ,
  result JSONB,
  error TEXT,
  expires_at TIMESTAMPTZ NOT NULL,
  created_at TIMESTAMPTZ NOT NULL,
  updated_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_{idempotency}_expires ON {idempotency}(expires_at);
"""


SQLITE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {outbox} (
  id TEXT PRIMARY KEY,
  scope_id TEXT,
  kind TEXT NOT NULL,
  payload TEXT NOT NULL,
  status TEXT NOT NULL,
  attempts INTEGER NOT NULL DEFAULT 0,
  next_attempt_at TEXT NOT NULL,
  last_error TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_{outbox}_claim ON {outbox}(status, next_attempt_at);
CREATE INDEX IF NOT EXISTS idx_{outbox}_browse ON {outbox}(status, updated_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_{outbox}_kind ON {outbox}(status, kind);

CREATE TABLE IF NOT EXISTS {idempotency} (
  key TEXT PRIMARY KEY,
  status TEXT NOT NULL,
  started_at TEXT NOT NULL,
  completed_at TEXT,
  failed_at TEXT,
  result TEXT,
  error TEXT,
  expires_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_{idempotency}_expires ON {idempotency}(expires_at);
"""


async def ensure_schema(
    db: DatabaseAdapter,
    outbox_table: str = OUTBOX_TABLE,
    idempotency_table: str = IDEMPOTENCY_TABLE,
) -> None:
    """Create the outbox and idempotency tables and their indexes."""
    template = POSTGRES_SCHEMA_SQL if db.is_postgres else SQLITE_SCHEMA_SQL
    await db.execute_script(template.format(outbox=outbox_table, idempotency=idempotency_table))
    logger.info(
        f"Schema ready: outbox={outbox_table} idempotency={idempotency_table} backend={db.backend.value}"
    )
