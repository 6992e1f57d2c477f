"""
Data log reports
"""

from datetime import datetime, timedelta
import pytest
from sqlalchemy.sql import Select
from ingestion.audit import DataLogWriter, STATUS_SUCCESS, STATUS_FAILED
from models import DataLogRecord


NOW = datetime(2024, 3, 20, 12, 0, 0)


def entry(days_ago, status, ms, hours=0):
    return DataLogRecord(
        queue_id=1,
        imei="356789012345678",
        source="bulk-add",
        status=status,
        processing_time_ms=ms,
        processed_at=NOW - timedelta(days=days_ago, hours=hours),
    )


@pytest.mark.asyncio
async def test_processing_metrics_over_window(db_session):
    db_session.add_all([
        entry(0, STATUS_SUCCESS, 120),
        entry(0, STATUS_FAILED, 480, hours=2),
        entry(1, STATUS_SUCCESS, 40),
        entry(10, STATUS_SUCCESS, 200),
        entry(10, STATUS_SUCCESS, None),
        # outside the 30 day window
        entry(45, STATUS_FAILED, 5),
    ])
    await db_session.commit()

    metrics = await DataLogWriter(db_session).processing_metrics(now=NOW)

    assert metrics.total_processed == 5
    assert metrics.success_rate == 80.0
    assert metrics.avg_processing_time_ms == 210.0
    assert metrics.fastest_processing_ms == 40
    assert metrics.slowest_processing_ms == 480
    assert [(d.date, d.total, d.successful, d.success_rate) for d in metrics.recent_performance] == [
        ("2024-03-20", 2, 1, 50.0),
        ("2024-03-19", 1, 1, 100.0),
    ]


@pytest.mark.asyncio
async def test_processing_metrics_empty_window(db_session):
    db_session.add(entry(45, STATUS_SUCCESS, 10))
    await db_session.commit()

    metrics = await DataLogWriter(db_session).processing_metrics(now=NOW)

    assert metrics.total_processed == 0
    assert metrics.recent_performance == []


@pytest.mark.asyncio
async def test_processing_metrics_aggregates_in_the_database(db_session, monkeypatch):
    db_session.add_all([entry(i % 5, STATUS_SUCCESS, i) for i in range(50)])
    await db_session.commit()

    statements = []
    execute = db_session.execute

    async def recording_execute(statement, *args, **kwargs):
        statements.append(statement)
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", recording_execute)
    metrics = await DataLogWriter(db_session).processing_metrics(now=NOW)

    assert metrics.total_processed == 50
    assert sum(d.total for d in metrics.recent_performance) == 50
    selects = [str(s) for s in statements if isinstance(s, Select)]
    assert len(selects) == 2
    assert all("count(imei_data_log.id)" in sql for sql in selects)
