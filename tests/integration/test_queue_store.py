"""
Queue store state machine against a real (SQLite) database
"""

import asyncio
from datetime import timedelta
import pytest
from sqlalchemy import select, update, func
from core.exceptions import ValidationError, InvalidTransitionError
from ingestion.queue.store import QueueStore
from models import QueueItem, QueueBatch, DataLogRecord, QueueStatus, BatchStatus
from models.base import utcnow


@pytest.mark.asyncio
async def test_enqueue_rejects_items_without_imei(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload, {"model": "iPhone 12"}, "junk"], source="upload")

    assert result.accepted_count == 1
    assert result.rejected_count == 2
    assert [r.index for r in result.rejected] == [1, 2]
    assert result.rejected[0].reason == "Missing IMEI"

    item = await store.get(result.item_ids[0])
    assert item.status == QueueStatus.PENDING
    assert item.batch_id == result.batch_id
    assert item.source == "upload"
    assert item.retry_count == 0

    batch = (await db_session.execute(select(QueueBatch))).scalar_one()
    assert batch.total_items == 1
    assert batch.status == BatchStatus.ACTIVE


@pytest.mark.asyncio
async def test_enqueue_with_nothing_valid_creates_nothing(db_session):
    store = QueueStore(db_session)

    with pytest.raises(ValidationError) as exc_info:
        await store.enqueue([{"model": "iPhone 12"}, {"imei": "N/A"}])

    assert len(exc_info.value.context["reasons"]) == 2
    assert await db_session.scalar(select(func.count(QueueItem.id))) == 0
    assert await db_session.scalar(select(func.count(QueueBatch.id))) == 0


@pytest.mark.asyncio
async def test_enqueue_rejects_overlong_imei(db_session, phone_payload):
    result = await QueueStore(db_session).enqueue([phone_payload, {"imei": "9" * 33}])

    assert result.accepted_count == 1
    assert result.rejected[0].index == 1
    assert result.rejected[0].reason == "IMEI longer than 32 characters"


@pytest.mark.asyncio
async def test_enqueue_validates_max_retries(db_session, phone_payload):
    with pytest.raises(ValidationError):
        await QueueStore(db_session).enqueue([phone_payload], max_retries=0)


@pytest.mark.asyncio
async def test_claim_order_priority_then_age(db_session, make_payloads):
    store = QueueStore(db_session)
    low = await store.enqueue(make_payloads(1, start=0), priority=9)
    first = await store.enqueue(make_payloads(1, start=1), priority=1)
    second = await store.enqueue(make_payloads(1, start=2), priority=1)

    claimed = [await store.claim_next() for _ in range(4)]

    assert [c.id for c in claimed[:3]] == [
        first.item_ids[0], second.item_ids[0], low.item_ids[0]
    ]
    assert all(c.status == QueueStatus.PROCESSING for c in claimed[:3])
    assert claimed[3] is None


@pytest.mark.asyncio
async def test_concurrent_claims_are_exclusive(session_factory, make_payloads):
    async with session_factory() as session:
        await QueueStore(session).enqueue(make_payloads(5))

    async def worker():
        claimed = []
        async with session_factory() as session:
            store = QueueStore(session)
            while True:
                item = await store.claim_next()
                if item is None:
                    return claimed
                claimed.append(item.id)

    results = await asyncio.gather(*(worker() for _ in range(3)))
    all_ids = [item_id for ids in results for item_id in ids]

    assert len(all_ids) == 5
    assert len(set(all_ids)) == 5


@pytest.mark.asyncio
async def test_claim_of_claimed_item_returns_none(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload])

    assert await store.claim(result.item_ids[0]) is not None
    assert await store.claim(result.item_ids[0]) is None


@pytest.mark.asyncio
async def test_complete_requires_processing(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload])

    with pytest.raises(InvalidTransitionError):
        await store.complete(result.item_ids[0])

    await store.claim(result.item_ids[0])
    item = await store.complete(result.item_ids[0])

    assert item.status == QueueStatus.COMPLETED
    assert item.processed_at is not None
    progress = await store.batches.get_progress(result.batch_id)
    assert progress.processed_items == 1
    assert progress.is_finished


@pytest.mark.asyncio
async def test_retry_bound(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload], max_retries=3)
    item_id = result.item_ids[0]

    for attempt in range(1, 4):
        assert await store.claim_next() is not None
        item = await store.fail(item_id, f"NormalizationError: attempt {attempt}")
        assert item.retry_count == attempt

    assert item.status == QueueStatus.FAILED
    assert item.error_message == "NormalizationError: attempt 3"
    assert await store.claim_next() is None

    log = (await db_session.execute(select(DataLogRecord))).scalar_one()
    assert log.status == "failed"
    assert log.queue_id == item_id
    assert log.imei == "356789012345678"

    progress = await store.batches.get_progress(result.batch_id)
    assert progress.failed_items == 1
    assert progress.status == BatchStatus.CLOSED


@pytest.mark.asyncio
async def test_fail_before_bound_returns_to_pending(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload], max_retries=2)

    await store.claim_next()
    item = await store.fail(result.item_ids[0], "TimeoutError: item processing timed out")

    assert item.status == QueueStatus.PENDING
    assert item.processed_at is None
    assert await db_session.scalar(select(func.count(DataLogRecord.id))) == 0


@pytest.mark.asyncio
async def test_fail_requires_processing(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload])

    with pytest.raises(InvalidTransitionError):
        await store.fail(result.item_ids[0], "boom")


@pytest.mark.asyncio
async def test_reset_to_pending(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload], max_retries=1)
    item_id = result.item_ids[0]

    with pytest.raises(InvalidTransitionError):
        await store.reset_to_pending(item_id)

    await store.claim_next()
    await store.fail(item_id, "boom")
    item = await store.reset_to_pending(item_id)

    assert item.status == QueueStatus.PENDING
    assert item.retry_count == 0
    assert item.error_message is None

    progress = await store.batches.get_progress(result.batch_id)
    assert progress.failed_items == 0
    assert progress.status == BatchStatus.ACTIVE


@pytest.mark.asyncio
async def test_retry_failed_resets_every_failed_item(db_session, make_payloads):
    store = QueueStore(db_session)
    result = await store.enqueue(make_payloads(3), max_retries=1)

    for _ in range(2):
        item = await store.claim_next()
        await store.fail(item.id, "boom")

    assert await store.retry_failed() == 2

    stats = await store.stats()
    assert stats.pending == 3
    assert stats.failed == 0
    progress = await store.batches.get_progress(result.batch_id)
    assert progress.failed_items == 0


@pytest.mark.asyncio
async def test_requeue_stale_counts_as_attempt(db_session, phone_payload):
    store = QueueStore(db_session)
    result = await store.enqueue([phone_payload], max_retries=3)
    item_id = result.item_ids[0]
    await store.claim_next()

    # still fresh
    assert await store.requeue_stale(older_than_seconds=600) == 0

    await db_session.execute(
        update(QueueItem)
        .where(QueueItem.id == item_id)
        .values(updated_at=utcnow() - timedelta(hours=1))
    )
    await db_session.commit()

    assert await store.requeue_stale(older_than_seconds=600) == 1
    item = await store.get(item_id)
    assert item.status == QueueStatus.PENDING
    assert item.retry_count == 1
    assert "abandoned" in item.error_message


@pytest.mark.asyncio
async def test_stats_and_listing(db_session, make_payloads):
    store = QueueStore(db_session)
    await store.enqueue(make_payloads(3))
    item = await store.claim_next()
    await store.complete(item.id)
    await store.claim_next()

    stats = await store.stats()
    assert stats.total == 3
    assert stats.pending == 1
    assert stats.processing == 1
    assert stats.completed == 1
    assert stats.oldest_pending is not None

    completed = await store.list_items(status=QueueStatus.COMPLETED)
    assert [i.id for i in completed] == [item.id]
    assert len(await store.list_items(limit=2)) == 2


@pytest.mark.asyncio
async def test_empty_queue_stats(db_session):
    stats = await QueueStore(db_session).stats()

    assert stats.total == 0
    assert stats.oldest_pending is None
