"""
Append-only data log of terminal queue outcomes, plus the reports built on it.
"""

from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case, Date
from models.base import utcnow
from models.audit import DataLogRecord
from models.queue_item import QueueItem
from schemas.reporting import DataLogStats, ProcessingMetrics, DailyPerformance
import logging

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


class DataLogWriter:
    """
    Writes and reports on DataLogRecord rows.

    Records are only ever inserted; there is no update path. ``record``
    does not commit so the entry lands in the same transaction as the
    outcome it describes.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def record(
        self,
        item: QueueItem,
        status: str,
        imei: Optional[str] = None,
        processed_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
    ) -> DataLogRecord:
        entry = DataLogRecord(
            queue_id=item.id,
            imei=imei,
            source=item.source,
            raw_payload=item.raw_payload,
            processed_data=processed_data,
            status=status,
            error_message=error_message,
            processing_time_ms=processing_time_ms,
            created_at=item.created_at,
            processed_at=utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_records(
        self,
        limit: int = 100,
        offset: int = 0,
        status: Optional[str] = None,
        source: Optional[str] = None,
    ) -> List[DataLogRecord]:
        query = select(DataLogRecord)
        if status:
            query = query.where(DataLogRecord.status == status)
        if source:
            query = query.where(DataLogRecord.source == source)
        query = query.order_by(DataLogRecord.processed_at.desc(), DataLogRecord.id.desc())
        result = await self.db.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def stats(self) -> DataLogStats:
        total = await self.db.scalar(select(func.count(DataLogRecord.id))) or 0
        avg_time = await self.db.scalar(select(func.avg(DataLogRecord.processing_time_ms)))

        by_status_result = await self.db.execute(
            select(DataLogRecord.status, func.count(DataLogRecord.id)).group_by(DataLogRecord.status)
        )
        by_status = {status: count for status, count in by_status_result.all()}

        by_source_result = await self.db.execute(
            select(DataLogRecord.source, func.count(DataLogRecord.id)).group_by(DataLogRecord.source)
        )
        by_source = {(source or "unknown"): count for source, count in by_source_result.all()}

        return DataLogStats(
            total_records=total,
            successful=by_status.get(STATUS_SUCCESS, 0),
            failed=by_status.get(STATUS_FAILED, 0),
            avg_processing_time_ms=round(float(avg_time or 0), 2),
            by_source=by_source,
            by_status=by_status,
        )

    async def processing_metrics(
        self,
        window_days: int = 30,
        recent_days: int = 7,
        now: Optional[datetime] = None,
    ) -> ProcessingMetrics:
        """Success rate and timing over the window, with a per-day breakdown of the recent days."""
        now = now or utcnow()
        since = now - timedelta(days=window_days)
        succeeded = func.sum(case((DataLogRecord.status == STATUS_SUCCESS, 1), else_=0))

        totals = (await self.db.execute(
            select(
                func.count(DataLogRecord.id),
                succeeded,
                func.avg(DataLogRecord.processing_time_ms),
                func.min(DataLogRecord.processing_time_ms),
                func.max(DataLogRecord.processing_time_ms),
            )
            .where(DataLogRecord.processed_at >= since)
        )).one()
        total, successful, avg_ms, fastest, slowest = totals
        if not total:
            return ProcessingMetrics()

        recent_since = datetime.combine((now - timedelta(days=recent_days - 1)).date(), time.min)
        day = func.date(DataLogRecord.processed_at, type_=Date)
        daily = await self.db.execute(
            select(day, func.count(DataLogRecord.id), succeeded)
            .where(DataLogRecord.processed_at >= max(since, recent_since))
            .group_by(day)
            .order_by(day.desc())
        )

        recent = [
            DailyPerformance(
                date=str(day_value),
                total=day_total,
                successful=day_ok or 0,
                success_rate=round((day_ok or 0) / day_total * 100, 2),
            )
            for day_value, day_total, day_ok in daily.all()
        ]

        return ProcessingMetrics(
            total_processed=total,
            success_rate=round((successful or 0) / total * 100, 2),
            avg_processing_time_ms=round(float(avg_ms), 2) if avg_ms is not None else 0.0,
            fastest_processing_ms=fastest or 0,
            slowest_processing_ms=slowest or 0,
            recent_performance=recent,
        )
