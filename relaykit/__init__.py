"""
relaykit - reliable delivery of side-effecting messages.

Transactional outbox with atomic claiming and backoff, a dead letter
queue manager, and an idempotency tracker.
"""

__version__ = "0.1.0"
