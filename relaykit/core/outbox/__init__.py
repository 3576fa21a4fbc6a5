"""
Outbox Pattern Implementation

At-least-once delivery of side-effecting messages (emails, webhooks).

Usage:
    from relaykit.core.outbox import OutboxStore, OutboxProcessor

    store = OutboxStore(db)
    await store.enqueue({"kind": "webhook", "payload": {"url": "https://example.com/hook"}})

    processor = OutboxProcessor(store, {"webhook": post_webhook})
    await processor.process_batch()
"""

from .models import (
    BatchFailure,
    BatchRetryResult,
    DeadLetterPage,
    DLQAction,
    DLQStats,
    OutboxItem,
    OutboxStatus,
)
from .payloads import (
    EmailMessage,
    EmailPayload,
    OutboxMessage,
    WebhookMessage,
    WebhookPayload,
    parse_outbox_message,
)
from .ports import DLQPort, OutboxPort
from .store import OutboxStore, backoff_delay
from .dlq import DLQManager
from .processor import Dispatcher, OutboxProcessor
from .lifecycle import outbox_lifespan

__all__ = [
    "BatchFailure",
    "BatchRetryResult",
    "DeadLetterPage",
    "DLQAction",
    "DLQStats",
    "OutboxItem",
    "OutboxStatus",
    "EmailMessage",
    "EmailPayload",
    "OutboxMessage",
    "WebhookMessage",
    "WebhookPayload",
    "parse_outbox_message",
    "DLQPort",
    "OutboxPort",
    "OutboxStore",
    "backoff_delay",
    "DLQManager",
    "Dispatcher",
    "OutboxProcessor",
    "outbox_lifespan",
]
