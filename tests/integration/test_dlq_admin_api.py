"""
Integration tests for the DLQ admin API and health endpoints.
"""

import pytest


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_ready(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"] == "healthy"
        assert data["checks"]["outbox_processor"] == "disabled"


class TestDLQEndpoints:

    @pytest.mark.asyncio
    async def test_list_entries(self, client, seed_dead, email_message, webhook_message):
        await seed_dead(email_message())
        hook_id = await seed_dead(webhook_message(), "HTTP 410 Gone")

        response = await client.get("/api/admin/dlq", params={"kind": "webhook"})

        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data["items"]] == [hook_id]
        assert data["items"][0]["status"] == "dead"
        assert data["total_count"] == 1
        assert data["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_list_rejects_oversized_page(self, client):
        response = await client.get("/api/admin/dlq", params={"limit": 500})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_ignores_invalid_cursor(self, client, seed_dead, email_message):
        await seed_dead(email_message())

        response = await client.get("/api/admin/dlq", params={"cursor": "garbage"})

        assert response.status_code == 200
        assert len(response.json()["items"]) == 1

    @pytest.mark.asyncio
    async def test_get_entry(self, client, seed_dead, email_message):
        item_id = await seed_dead(email_message(), "mailbox full")

        response = await client.get(f"/api/admin/dlq/{item_id}")

        assert response.status_code == 200
        assert response.json()["last_error"] == "mailbox full"

    @pytest.mark.asyncio
    async def test_get_missing_entry(self, client):
        response = await client.get("/api/admin/dlq/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"] == "DLQ entry not found"

    @pytest.mark.asyncio
    async def test_retry_entry(self, app, client, seed_dead, email_message):
        item_id = await seed_dead(email_message())

        response = await client.post(f"/api/admin/dlq/{item_id}/retry")

        assert response.status_code == 200
        assert response.json() == {"status": "queued_for_retry", "entry_id": item_id}
        item = await app.state.store.get(item_id)
        assert item.status == "queued"
        assert item.attempts == 0

        again = await client.post(f"/api/admin/dlq/{item_id}/retry")
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_retry_batch(self, client, seed_dead, email_message):
        item_id = await seed_dead(email_message())

        response = await client.post(
            "/api/admin/dlq/retry-batch",
            json={"ids": [item_id, "missing"], "reason": "provider recovered"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == [item_id]
        assert data["failed"] == [{"id": "missing", "error": "not found or not dead"}]

    @pytest.mark.asyncio
    async def test_retry_batch_requires_ids(self, client):
        response = await client.post("/api/admin/dlq/retry-batch", json={"ids": []})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_retry_all(self, client, seed_dead, webhook_message):
        ids = [await seed_dead(webhook_message()) for _ in range(3)]

        response = await client.post("/api/admin/dlq/retry-all", json={"kind": "webhook"})

        assert response.status_code == 200
        assert sorted(response.json()["succeeded"]) == sorted(ids)

    @pytest.mark.asyncio
    async def test_purge_entry(self, client, seed_dead, email_message):
        item_id = await seed_dead(email_message())

        response = await client.delete(f"/api/admin/dlq/{item_id}")

        assert response.status_code == 200
        assert response.json() == {"status": "purged", "entry_id": item_id}
        assert (await client.get(f"/api/admin/dlq/{item_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_purge_batch(self, client, seed_dead, email_message):
        ids = [await seed_dead(email_message()) for _ in range(2)]

        response = await client.post("/api/admin/dlq/purge-batch", json={"ids": ids + ["missing"]})

        assert response.status_code == 200
        assert response.json() == {"status": "purged", "requested": 3, "count": 2}

    @pytest.mark.asyncio
    async def test_stats_and_count(self, client, seed_dead, email_message, webhook_message):
        await seed_dead(email_message(), "smtp timeout")
        await seed_dead(webhook_message(), "HTTP 500")

        stats = (await client.get("/api/admin/dlq/stats")).json()
        count = (await client.get("/api/admin/dlq/count", params={"kind": "email"})).json()

        assert stats["total_dead"] == 2
        assert stats["by_kind"] == {"email": 1, "webhook": 1}
        assert stats["by_error_prefix"] == {"smtp timeout": 1, "HTTP 500": 1}
        assert count == {"count": 1}


class TestAdminAuth:

    @pytest.mark.asyncio
    async def test_key_required_when_enabled(self, client, monkeypatch):
        monkeypatch.setenv("AUTH_REQUIRED", "true")
        monkeypatch.setenv("ADMIN_API_KEY", "s3cret")

        missing = await client.get("/api/admin/dlq/count")
        wrong = await client.get("/api/admin/dlq/count", headers={"X-Admin-Key": "nope"})
        right = await client.get("/api/admin/dlq/count", headers={"X-Admin-Key": "s3cret"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert right.status_code == 200

    @pytest.mark.asyncio
    async def test_health_is_public(self, client, monkeypatch):
        monkeypatch.setenv("AUTH_REQUIRED", "true")
        monkeypatch.setenv("ADMIN_API_KEY", "s3cret")

        assert (await client.get("/health")).status_code == 200
