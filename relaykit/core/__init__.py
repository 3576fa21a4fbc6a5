"""
relaykit core: outbox, dead letter queue, idempotency and cursor pagination.
"""
