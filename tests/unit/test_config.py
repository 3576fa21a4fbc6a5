"""
Tests for environment-driven configuration.
"""

from relaykit.core.config import DLQConfig, IdempotencyConfig, OutboxConfig


class TestConfigFromEnv:

    def test_outbox_defaults(self, monkeypatch):
        for name in ("OUTBOX_MAX_RETRIES", "OUTBOX_BASE_DELAY_SEC", "OUTBOX_PROCESSOR_ENABLED", "OUTBOX_DISPATCHERS"):
            monkeypatch.delenv(name, raising=False)

        config = OutboxConfig.from_env()

        assert config.max_retries == 8
        assert config.base_delay_sec == 30.0
        assert config.max_delay_sec == 1800.0
        assert config.processor_enabled is True
        assert config.dispatchers_path is None

    def test_outbox_overrides(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_MAX_RETRIES", "3")
        monkeypatch.setenv("OUTBOX_PROCESSOR_ENABLED", "false")
        monkeypatch.setenv("OUTBOX_DISPATCHERS", "app.delivery:DISPATCHERS")

        config = OutboxConfig.from_env()

        assert config.max_retries == 3
        assert config.processor_enabled is False
        assert config.dispatchers_path == "app.delivery:DISPATCHERS"

    def test_dlq_and_idempotency(self, monkeypatch):
        monkeypatch.setenv("DLQ_MAX_PAGE_SIZE", "25")
        monkeypatch.setenv("IDEMPOTENCY_IN_PROGRESS_TIMEOUT_MS", "1000")
        monkeypatch.delenv("IDEMPOTENCY_TTL_MS", raising=False)

        assert DLQConfig.from_env().max_page_size == 25
        idempotency = IdempotencyConfig.from_env()
        assert idempotency.in_progress_timeout_ms == 1000
        assert idempotency.ttl_ms == 7 * 24 * 60 * 60 * 1000
