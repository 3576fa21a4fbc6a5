"""
Tests for the SQLite side of the database adapter.
"""

import logging
from datetime import datetime, timedelta, timezone

import asyncpg
import pytest

from relaykit.core.database import DatabaseAdapter, DatabaseConfig, affected_rows, ensure_schema, to_db_timestamp


class TestHelpers:

    @pytest.mark.parametrize("status,expected", [
        ("UPDATE 3", 3),
        ("DELETE 0", 0),
        ("INSERT 0 1", 1),
        ("OK 2", 2),
        ("", 0),
        (None, 0),
    ])
    def test_affected_rows(self, status, expected):
        assert affected_rows(status) == expected

    def test_timestamps_sort_as_text(self):
        earlier = datetime(2026, 1, 19, 12, 0, tzinfo=timezone.utc)
        later_other_zone = datetime(2026, 1, 19, 13, 30, tzinfo=timezone(timedelta(hours=1)))

        assert to_db_timestamp(earlier) < to_db_timestamp(later_other_zone)
        assert to_db_timestamp(earlier) == "2026-01-19T12:00:00.000000+00:00"

    def test_naive_timestamps_are_utc(self):
        assert to_db_timestamp(datetime(2026, 1, 19)) == "2026-01-19T00:00:00.000000+00:00"


class TestSQLiteAdapter:

    @pytest.mark.asyncio
    async def test_numbered_placeholders_can_repeat(self, db):
        value = await db.fetchval("SELECT $1 || '-' || $1 AS joined", "a")

        assert value == "a-a"

    @pytest.mark.asyncio
    async def test_regexp_is_case_insensitive(self, db):
        assert await db.fetchval("SELECT 'SMTP Timeout' REGEXP $1 AS hit", "smtp timeout") == 1
        assert await db.fetchval("SELECT NULL REGEXP $1 AS hit", "x") == 0

    @pytest.mark.asyncio
    async def test_unique_violation_detected(self, db):
        sql = "INSERT INTO idempotency_records (key, status, started_at, expires_at, created_at, updated_at) VALUES ($1, $2, $3, $3, $3, $3)"
        now = datetime(2026, 1, 19, tzinfo=timezone.utc)
        await db.execute(sql, "k", "in_progress", now)

        with pytest.raises(Exception) as exc_info:
            await db.execute(sql, "k", "in_progress", now)

        assert db.is_unique_violation(exc_info.value)
        assert not db.is_unique_violation(ValueError("UNIQUE"))
        assert not db.in_transaction

    @pytest.mark.asyncio
    async def test_failed_returning_statement_is_rolled_back(self, db):
        sql = "INSERT INTO idempotency_records (key, status, started_at, expires_at, created_at, updated_at) VALUES ($1, 'in_progress', $2, $2, $2, $2) RETURNING key"
        now = datetime(2026, 1, 19, tzinfo=timezone.utc)
        assert await db.fetchrow_returning(sql, "k", now) == {"key": "k"}

        with pytest.raises(Exception):
            await db.fetchrow_returning(sql, "k", now)

        assert not db.in_transaction
        assert await db.fetchval("SELECT COUNT(*) AS count FROM idempotency_records") == 1

    def test_invalid_regex_detection(self):
        db = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=":memory:"))
        assert db.is_invalid_regex(asyncpg.InvalidRegularExpressionError("invalid regular expression"))
        assert not db.is_invalid_regex(ValueError("invalid regular expression"))

    @pytest.mark.asyncio
    async def test_execute_reports_row_count(self, db):
        now = datetime(2026, 1, 19, tzinfo=timezone.utc)
        sql = "INSERT INTO idempotency_records (key, status, started_at, expires_at, created_at, updated_at) VALUES ($1, 'completed', $2, $2, $2, $2)"
        await db.execute(sql, "a", now)
        await db.execute(sql, "b", now)

        status = await db.execute("DELETE FROM idempotency_records WHERE status = $1", "completed")

        assert affected_rows(status) == 2

    @pytest.mark.asyncio
    async def test_schema_setup_is_idempotent_and_logged(self, db, caplog):
        with caplog.at_level(logging.INFO, logger="relaykit.core.database.schema"):
            await ensure_schema(db)

        assert [r.msg for r in caplog.records] == [
            "Schema ready: outbox=outbox_items idempotency=idempotency_records backend=sqlite"
        ]

    @pytest.mark.asyncio
    async def test_connects_lazily(self, tmp_path):
        adapter = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=str(tmp_path / "lazy" / "x.db")))
        try:
            assert await adapter.fetchval("SELECT 1 AS one") == 1
        finally:
            await adapter.disconnect()
