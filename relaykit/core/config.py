"""
relaykit Configuration

Environment-driven settings for the outbox, the DLQ and the idempotency
tracker. Values are read when the config object is built, so tests can
construct configs directly with explicit values.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

_env_loaded = False


def load_environment() -> None:
    """Load variables from a .env file once per process."""
    global _env_loaded
    if not _env_loaded:
        load_dotenv()
        _env_loaded = True


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class OutboxConfig:
    """Outbox retry policy and worker settings."""

    max_retries: int = 8
    base_delay_sec: float = 30.0
    max_delay_sec: float = 1800.0
    claim_limit_max: int = 100
    lease_timeout_sec: float = 300.0
    poll_interval: float = 1.0
    batch_size: int = 10
    processor_enabled: bool = True
    dispatchers_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "OutboxConfig":
        load_environment()
        return cls(
            max_retries=int(os.getenv("OUTBOX_MAX_RETRIES", "8")),
            base_delay_sec=float(os.getenv("OUTBOX_BASE_DELAY_SEC", "30")),
            max_delay_sec=float(os.getenv("OUTBOX_MAX_DELAY_SEC", "1800")),
            claim_limit_max=int(os.getenv("OUTBOX_CLAIM_LIMIT_MAX", "100")),
            lease_timeout_sec=float(os.getenv("OUTBOX_LEASE_TIMEOUT_SEC", "300")),
            poll_interval=float(os.getenv("OUTBOX_POLL_INTERVAL", "1.0")),
            batch_size=int(os.getenv("OUTBOX_BATCH_SIZE", "10")),
            processor_enabled=_env_bool("OUTBOX_PROCESSOR_ENABLED", "true"),
            dispatchers_path=os.getenv("OUTBOX_DISPATCHERS") or None,
        )


@dataclass
class DLQConfig:
    """Dead letter queue browsing and reporting limits."""

    max_page_size: int = 50
    error_prefix_length: int = 60
    top_errors: int = 10

    @classmethod
    def from_env(cls) -> "DLQConfig":
        load_environment()
        return cls(
            max_page_size=int(os.getenv("DLQ_MAX_PAGE_SIZE", "50")),
            error_prefix_length=int(os.getenv("DLQ_ERROR_PREFIX_LENGTH", "60")),
            top_errors=int(os.getenv("DLQ_TOP_ERRORS", "10")),
        )


DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000
DEFAULT_IN_PROGRESS_TIMEOUT_MS = 5 * 60 * 1000


@dataclass
class IdempotencyConfig:
    """Idempotency record lifetime and crash-recovery timeout."""

    ttl_ms: int = DEFAULT_TTL_MS
    in_progress_timeout_ms: int = DEFAULT_IN_PROGRESS_TIMEOUT_MS

    @classmethod
    def from_env(cls) -> "IdempotencyConfig":
        load_environment()
        return cls(
            ttl_ms=int(os.getenv("IDEMPOTENCY_TTL_MS", str(DEFAULT_TTL_MS))),
            in_progress_timeout_ms=int(
                os.getenv("IDEMPOTENCY_IN_PROGRESS_TIMEOUT_MS", str(DEFAULT_IN_PROGRESS_TIMEOUT_MS))
            ),
        )
