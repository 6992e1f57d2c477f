"""
API endpoint tests
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from api.main import app
from api.dependencies import get_db
from ingestion.dispatcher import QueueDispatcher
from ingestion.queue.store import QueueStore


@pytest_asyncio.fixture
async def client(session_factory):
    """Create test client with database override"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


async def fail_one(session_factory, payload):
    """Enqueue a single-attempt item and fail it"""
    async with session_factory() as session:
        store = QueueStore(session)
        result = await store.enqueue([payload], max_retries=1)
        await store.claim_next()
        await store.fail(result.item_ids[0], "boom")
    return result.item_ids[0]


# ============================================================================
# Queue
# ============================================================================

@pytest.mark.asyncio
async def test_enqueue_endpoint(client, phone_payload):
    response = await client.post("/queue/items", json={
        "items": [phone_payload, {"model": "no imei"}],
        "source": "bulk-upload",
        "priority": 2,
    })

    assert response.status_code == 202
    data = response.json()
    assert data["accepted_count"] == 1
    assert data["rejected_count"] == 1
    assert data["rejected"] == [{"index": 1, "reason": "Missing IMEI"}]
    assert data["batch_id"].startswith("batch_")
    assert "X-Request-ID" in response.headers
    assert "X-API-Latency-ms" in response.headers

    items = (await client.get("/queue/items", params={"status": "pending"})).json()
    assert len(items) == 1
    assert items[0]["priority"] == 2
    assert items[0]["source"] == "bulk-upload"
    assert items[0]["raw_payload"]["imei"] == phone_payload["imei"]


@pytest.mark.asyncio
async def test_enqueue_reports_non_object_items(client, phone_payload):
    response = await client.post("/queue/items", json={"items": [phone_payload, "junk", 42, None]})

    assert response.status_code == 202
    data = response.json()
    assert data["accepted_count"] == 1
    assert data["rejected"] == [
        {"index": 1, "reason": "Item is not a JSON object"},
        {"index": 2, "reason": "Item is not a JSON object"},
        {"index": 3, "reason": "Item is not a JSON object"},
    ]


@pytest.mark.asyncio
async def test_enqueue_nothing_valid_is_422(client):
    response = await client.post("/queue/items", json={"items": [{"model": "iPhone 13"}]})

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["detail"] == "No valid items to enqueue"


@pytest.mark.asyncio
async def test_enqueue_empty_body_is_422(client):
    response = await client.post("/queue/items", json={"items": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_queue_stats_endpoint(client, make_payloads):
    await client.post("/queue/items", json={"items": make_payloads(3)})

    response = await client.get("/queue/stats")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["pending"] == 3
    assert data["oldest_pending"] is not None


@pytest.mark.asyncio
async def test_retry_failed_and_reset(client, session_factory, phone_payload, make_payloads):
    failed_id = await fail_one(session_factory, phone_payload)
    other_id = await fail_one(session_factory, make_payloads(1)[0])

    response = await client.post(f"/queue/items/{failed_id}/reset")
    assert response.status_code == 200
    assert response.json()["status"] == "pending"

    # no longer failed
    response = await client.post(f"/queue/items/{failed_id}/reset")
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransitionError"

    response = await client.post("/queue/retry-failed")
    assert response.status_code == 200
    assert response.json()["count"] == 1

    stats = (await client.get("/queue/stats")).json()
    assert stats["failed"] == 0
    assert stats["pending"] == 2
    assert other_id != failed_id


@pytest.mark.asyncio
async def test_batch_progress_endpoint(client, make_payloads):
    batch_id = (await client.post("/queue/items", json={"items": make_payloads(2)})).json()["batch_id"]

    response = await client.get(f"/queue/batches/{batch_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["total_items"] == 2
    assert data["progress"] == 0.0
    assert data["status"] == "active"
    assert data["status_counts"] == {"pending": 2}

    assert (await client.get("/queue/batches/batch_missing")).status_code == 404


@pytest.mark.asyncio
async def test_clear_completed_endpoint(client, session_factory, seeded_catalog, fast_settings, phone_payload):
    await client.post("/queue/items", json={"items": [phone_payload]})
    await QueueDispatcher(session_factory).process_next()

    response = await client.post("/queue/clear-completed", params={"older_than_days": 0})

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert (await client.get("/queue/stats")).json()["total"] == 0


# ============================================================================
# Archive
# ============================================================================

@pytest.mark.asyncio
async def test_archive_restore_endpoints(client, session_factory, seeded_catalog, fast_settings, phone_payload):
    imei = phone_payload["imei"]
    await client.post("/queue/items", json={"items": [phone_payload]})
    await QueueDispatcher(session_factory).process_next()

    response = await client.post(f"/archive/{imei}")
    assert response.status_code == 200
    assert response.json()["count"] == 3

    records = (await client.get(f"/archive/{imei}")).json()
    assert len(records) == 3
    assert all(r["archived_by"] == "api" for r in records)

    stats = (await client.get("/archive/stats")).json()
    assert stats["total_archived"] == 3
    assert stats["by_table"]["device_records"] == 1

    response = await client.post(f"/archive/{imei}/restore")
    assert response.status_code == 200
    assert response.json()["count"] == 3

    # live rows exist again
    await client.post(f"/archive/{imei}")
    await client.post("/queue/items", json={"items": [phone_payload]})
    await QueueDispatcher(session_factory).process_next()
    response = await client.post(f"/archive/{imei}/restore")
    assert response.status_code == 409
    assert response.json()["error"] == "ArchivalError"

    response = await client.delete(f"/archive/{imei}")
    assert response.status_code == 200
    assert response.json()["count"] == 3
    assert (await client.get("/archive/records")).json() == []


# ============================================================================
# Metrics and health
# ============================================================================

@pytest.mark.asyncio
async def test_metrics_endpoints(client, session_factory, seeded_catalog, fast_settings, phone_payload, make_payloads):
    await client.post("/queue/items", json={"items": [phone_payload]})
    await QueueDispatcher(session_factory).process_next()
    await fail_one(session_factory, make_payloads(1)[0])

    data_log = (await client.get("/metrics/data-log")).json()
    assert data_log["total_records"] == 2
    assert data_log["successful"] == 1
    assert data_log["failed"] == 1
    assert data_log["by_source"] == {"bulk-add": 2}

    processing = (await client.get("/metrics/processing")).json()
    assert processing["total_processed"] == 2
    assert processing["success_rate"] == 50.0
    assert len(processing["recent_performance"]) == 1

    failed = (await client.get("/metrics/data-log/records", params={"status": "failed"})).json()
    assert len(failed) == 1
    assert failed[0]["error_message"] == "boom"

    assert (await client.get("/metrics/data-log/records", params={"status": "bogus"})).status_code == 422


@pytest.mark.asyncio
async def test_health_endpoint(client, session_factory, phone_payload):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["queue"]["total"] == 0

    await fail_one(session_factory, phone_payload)

    data = (await client.get("/health")).json()
    assert data["status"] == "degraded"
    assert data["queue"]["failed"] == 1


@pytest.mark.asyncio
async def test_root_endpoint(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["message"] == "IMEI Ingestion Service"
