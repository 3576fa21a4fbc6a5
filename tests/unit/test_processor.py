"""
Tests for the outbox processor, its lifespan helper and the runner's
dispatcher loading.
"""

import asyncio
from datetime import timedelta

import pytest

from relaykit.core.config import OutboxConfig
from relaykit.core.errors import PermanentDispatchError, TransientDispatchError
from relaykit.core.outbox import OutboxProcessor, outbox_lifespan
from relaykit.core.outbox.runner import OutboxRunner, load_dispatchers


class RecordingDispatcher:
    """Dispatcher double that records items and optionally raises."""

    def __init__(self, error=None, on_call=None):
        self.error = error
        self.on_call = on_call
        self.items = []

    async def __call__(self, item):
        self.items.append(item)
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error


class TestProcessBatch:

    @pytest.mark.asyncio
    async def test_success_marks_delivered(self, store, email_message):
        item_id = await store.enqueue(email_message())
        dispatcher = RecordingDispatcher()
        processor = OutboxProcessor(store, {"email": dispatcher})

        assert await processor.process_batch() == 1

        assert [item.id for item in dispatcher.items] == [item_id]
        assert dispatcher.items[0].payload["subject"] == "Welcome"
        assert (await store.get(item_id)).status == "delivered"

    @pytest.mark.asyncio
    async def test_transient_failure_schedules_retry(self, store, clock, webhook_message):
        item_id = await store.enqueue(webhook_message())
        processor = OutboxProcessor(
            store, {"webhook": RecordingDispatcher(TransientDispatchError("HTTP 503"))}
        )

        await processor.process_batch()

        item = await store.get(item_id)
        assert item.status == "failed"
        assert item.attempts == 1
        assert item.last_error == "HTTP 503"
        assert item.next_attempt_at >= clock() + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_transient(self, store, webhook_message):
        item_id = await store.enqueue(webhook_message())
        processor = OutboxProcessor(store, {"webhook": RecordingDispatcher(KeyError("x"))})

        await processor.process_batch()

        assert (await store.get(item_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_permanent_failure_dead_letters(self, store, email_message):
        item_id = await store.enqueue(email_message())
        processor = OutboxProcessor(
            store, {"email": RecordingDispatcher(PermanentDispatchError("mailbox does not exist"))}
        )

        await processor.process_batch()

        item = await store.get(item_id)
        assert item.status == "dead"
        assert item.last_error == "mailbox does not exist"

    @pytest.mark.asyncio
    async def test_unknown_kind_dead_letters(self, store, email_message):
        item_id = await store.enqueue(email_message())
        processor = OutboxProcessor(store, {})

        await processor.process_batch()

        item = await store.get(item_id)
        assert item.status == "dead"
        assert "email" in item.last_error

    @pytest.mark.asyncio
    async def test_dead_after_max_retries(self, store, clock, webhook_message):
        item_id = await store.enqueue(webhook_message())
        processor = OutboxProcessor(store, {"webhook": RecordingDispatcher(RuntimeError("HTTP 500"))})

        for _ in range(store.config.max_retries + 1):
            assert await processor.process_batch() == 1
            clock.advance(hours=1)

        item = await store.get(item_id)
        assert item.status == "dead"
        assert item.attempts == store.config.max_retries + 1
        assert await processor.process_batch() == 0

    @pytest.mark.asyncio
    async def test_long_errors_truncated(self, store, webhook_message):
        item_id = await store.enqueue(webhook_message())
        processor = OutboxProcessor(store, {"webhook": RecordingDispatcher(RuntimeError("e" * 5000))})

        await processor.process_batch()

        assert len((await store.get(item_id)).last_error) == 1000

    @pytest.mark.asyncio
    async def test_deadline_releases_remaining_claims(self, store, clock, email_message):
        ids = []
        for n in range(3):
            ids.append(await store.enqueue(email_message(f"m{n}")))
            clock.advance(1)
        dispatcher = RecordingDispatcher(on_call=lambda: clock.advance(10))
        processor = OutboxProcessor(store, {"email": dispatcher})

        dispatched = await processor.process_batch(deadline=clock() + timedelta(seconds=5))

        assert dispatched == 1
        assert (await store.get(ids[0])).status == "delivered"
        assert (await store.get(ids[1])).status == "queued"
        assert (await store.get(ids[2])).status == "queued"

    @pytest.mark.asyncio
    async def test_expired_leases_recovered(self, store, clock, email_message):
        item_id = await store.enqueue(email_message())
        await store.claim_batch(clock(), 1)
        processor = OutboxProcessor(store, {"email": RecordingDispatcher()})

        assert await processor.process_batch() == 0

        clock.advance(store.config.lease_timeout_sec + 1)
        assert await processor.process_batch() == 1
        assert (await store.get(item_id)).status == "delivered"

    @pytest.mark.asyncio
    async def test_empty_queue(self, store):
        processor = OutboxProcessor(store, {"email": RecordingDispatcher()})

        assert await processor.process_batch() == 0


class TestProcessorLoop:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, email_message):
        item_id = await store.enqueue(email_message())
        processor = OutboxProcessor(
            store,
            {"email": RecordingDispatcher()},
            OutboxConfig(poll_interval=0.01),
        )

        await processor.start()
        assert processor.running
        for _ in range(200):
            if (await store.get(item_id)).status == "delivered":
                break
            await asyncio.sleep(0.01)
        await processor.stop()

        assert not processor.running
        assert (await store.get(item_id)).status == "delivered"

    @pytest.mark.asyncio
    async def test_lifespan_disabled(self, store):
        processor = OutboxProcessor(store, {}, OutboxConfig(processor_enabled=False))

        async with outbox_lifespan(processor) as running:
            assert running is None
            assert not processor.running

        async with outbox_lifespan(None) as running:
            assert running is None

    @pytest.mark.asyncio
    async def test_lifespan_enabled(self, store):
        processor = OutboxProcessor(store, {}, OutboxConfig(poll_interval=0.01))

        async with outbox_lifespan(processor) as running:
            assert running is processor
            assert processor.running

        assert not processor.running


class TestRunner:

    def test_load_dispatchers_from_module(self, tmp_path, monkeypatch):
        (tmp_path / "acme_dispatchers.py").write_text(
            "async def send_email(item):\n"
            "    return None\n"
            "\n"
            "DISPATCHERS = {'email': send_email}\n"
            "\n"
            "def build():\n"
            "    return {'webhook': send_email}\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))

        assert list(load_dispatchers("acme_dispatchers:DISPATCHERS")) == ["email"]
        assert list(load_dispatchers("acme_dispatchers:build")) == ["webhook"]

    @pytest.mark.parametrize("path", [None, "", "no_colon_here", "os:sep"])
    def test_load_dispatchers_rejects_bad_paths(self, path):
        with pytest.raises(ValueError):
            load_dispatchers(path)

    @pytest.mark.asyncio
    async def test_health_before_start(self):
        runner = OutboxRunner(OutboxConfig(dispatchers_path="x:y"))

        health = await runner.health_check()

        assert health["status"] == "unhealthy"
        assert health["running"] is False

        runner.request_shutdown()
        assert (await runner.health_check())["shutdown_requested"] is True
