"""
Archive-before-delete for IMEI data and completed queue rows.

Every destructive operation snapshots the rows it removes into
imei_archived inside the same transaction, so a delete can always be
traced and an IMEI's live rows can be restored.
"""

import enum
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, insert, Enum as SAEnum, DateTime
from core.exceptions import ArchivalError
from models.base import QueueStatus, utcnow
from models.device import DeviceUnit, SkuMatchResult, DeviceTest
from models.queue_item import QueueItem
from models.audit import ArchivedRecord
from ingestion.loaders.device_loader import DeviceLoader
from ingestion.transformers.normalizer import DeviceNormalizer
from schemas.reporting import ArchiveStats
import logging

logger = logging.getLogger(__name__)

# Tables holding live per-IMEI state, in restore order
IMEI_MODELS = (DeviceUnit, SkuMatchResult, DeviceTest)
IMEI_TABLES = {model.__tablename__: model for model in IMEI_MODELS}

REASON_MANUAL = "manual_delete"
REASON_CLEANUP = "cleanup"

CLEANUP_CHUNK = 500


def snapshot(row) -> Dict[str, Any]:
    """JSON-safe copy of every mapped column of a row."""
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        data[column.key] = value
    return data


def rehydrate(model, data: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of ``snapshot`` using the table's column types."""
    values = {}
    for column in model.__table__.columns:
        if column.key not in data:
            continue
        value = data[column.key]
        if value is not None:
            if isinstance(column.type, SAEnum) and column.type.enum_class is not None:
                value = column.type.enum_class(value)
            elif isinstance(column.type, DateTime):
                value = datetime.fromisoformat(value)
        values[column.key] = value
    return values


class ArchivalManager:
    """
    Archive, restore and permanently delete IMEI data.

    Responsibilities:
    - Snapshot then delete live rows for an IMEI (one transaction)
    - Restore the latest archived snapshot set for an IMEI
    - Permanently delete archive rows
    - Archive-then-delete completed queue rows (cleanup)
    - Archive statistics and listings

    Any failure rolls the whole operation back and raises ArchivalError.
    """

    def __init__(self, db_session: AsyncSession, archived_by: str = "system"):
        self.db = db_session
        self.archived_by = archived_by

    # ------------------------------------------------------------------
    # Archive / restore / delete
    # ------------------------------------------------------------------

    async def archive_imei(self, imei: str, reason: str = REASON_MANUAL) -> int:
        """
        Move every live row for ``imei`` into the archive.

        Returns:
            Number of rows archived (0 if the IMEI has no live rows)
        """
        try:
            skus = await self._inventory_skus(imei)
            archived_at = utcnow()
            count = 0

            for model in IMEI_MODELS:
                result = await self.db.execute(select(model).where(model.imei == imei))
                rows = result.scalars().all()
                for row in rows:
                    self.db.add(ArchivedRecord(
                        original_table=model.__tablename__,
                        original_id=row.id,
                        imei=imei,
                        archived_data=snapshot(row),
                        archived_at=archived_at,
                        archived_by=self.archived_by,
                        archive_reason=reason,
                    ))
                count += len(rows)
                await self.db.flush()
                await self.db.execute(
                    delete(model).where(model.imei == imei).execution_options(synchronize_session=False)
                )
                for row in rows:
                    self.db.expunge(row)

            await DeviceLoader(self.db).recompute_rollups(skus)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise self._wrap("archive", imei, e)

        logger.info(f"Archived {count} rows for IMEI {imei} (reason={reason})")
        return count

    async def restore_imei(self, imei: str) -> int:
        """
        Re-insert the most recently archived rows for ``imei``.

        Only the set sharing the newest ``archived_at`` is restored and
        removed from the archive. Older sets for the same IMEI stay in
        imei_archived until ``permanently_delete`` and remain visible in
        ``get_archived_records``. Queue cleanup snapshots (original_table
        queue_items) are history only and are never restored.

        Raises:
            ArchivalError: live rows already exist for the IMEI, or the restore failed
        """
        try:
            latest = await self.db.scalar(
                select(func.max(ArchivedRecord.archived_at)).where(
                    ArchivedRecord.imei == imei,
                    ArchivedRecord.original_table.in_(IMEI_TABLES.keys()),
                )
            )
            if latest is None:
                return 0

            for model in IMEI_MODELS:
                existing = await self.db.scalar(
                    select(func.count()).select_from(model).where(model.imei == imei)
                )
                if existing:
                    raise ArchivalError(
                        f"Live rows already exist for IMEI {imei}",
                        context={"imei": imei, "table": model.__tablename__, "rows": existing}
                    )

            result = await self.db.execute(
                select(ArchivedRecord)
                .where(
                    ArchivedRecord.imei == imei,
                    ArchivedRecord.archived_at == latest,
                    ArchivedRecord.original_table.in_(IMEI_TABLES.keys()),
                )
                .order_by(ArchivedRecord.id)
            )
            archives = result.scalars().all()

            skus: Set[Optional[str]] = set()
            for model in IMEI_MODELS:
                for archive in archives:
                    if archive.original_table != model.__tablename__:
                        continue
                    values = rehydrate(model, archive.archived_data)
                    if model is DeviceUnit:
                        skus.add(values.get("inventory_sku"))
                    await self.db.execute(insert(model.__table__).values(**values))

            await self.db.execute(
                delete(ArchivedRecord)
                .where(ArchivedRecord.id.in_([a.id for a in archives]))
                .execution_options(synchronize_session=False)
            )
            await DeviceLoader(self.db).recompute_rollups(skus)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise self._wrap("restore", imei, e)

        logger.info(f"Restored {len(archives)} rows for IMEI {imei}")
        return len(archives)

    async def permanently_delete(self, imei: str) -> int:
        """Delete archive rows for ``imei``; live tables are not touched."""
        try:
            result = await self.db.execute(
                delete(ArchivedRecord)
                .where(ArchivedRecord.imei == imei)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise self._wrap("permanent delete", imei, e)

        logger.info(f"Permanently deleted {result.rowcount} archived rows for IMEI {imei}")
        return result.rowcount

    async def archive_completed_queue_items(self, older_than_days: int = 7) -> int:
        """
        Archive then delete completed queue items processed before the cutoff.

        Returns:
            Number of queue items removed
        """
        cutoff = utcnow() - timedelta(days=older_than_days)
        normalizer = DeviceNormalizer()
        total = 0

        try:
            while True:
                result = await self.db.execute(
                    select(QueueItem)
                    .where(
                        QueueItem.status == QueueStatus.COMPLETED,
                        QueueItem.processed_at < cutoff,
                    )
                    .order_by(QueueItem.id)
                    .limit(CLEANUP_CHUNK)
                )
                items = result.scalars().all()
                if not items:
                    break

                archived_at = utcnow()
                for item in items:
                    self.db.add(ArchivedRecord(
                        original_table=QueueItem.__tablename__,
                        original_id=item.id,
                        imei=normalizer.extract_imei(item.raw_payload),
                        archived_data=snapshot(item),
                        archived_at=archived_at,
                        archived_by=self.archived_by,
                        archive_reason=REASON_CLEANUP,
                    ))
                await self.db.flush()
                await self.db.execute(
                    delete(QueueItem)
                    .where(QueueItem.id.in_([item.id for item in items]))
                    .execution_options(synchronize_session=False)
                )
                for item in items:
                    self.db.expunge(item)
                await self.db.commit()
                total += len(items)
        except Exception as e:
            await self.db.rollback()
            raise self._wrap("cleanup", None, e)

        logger.info(f"Archived and removed {total} completed queue items older than {older_than_days} days")
        return total

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_archived_records(self, imei: str) -> List[ArchivedRecord]:
        result = await self.db.execute(
            select(ArchivedRecord)
            .where(ArchivedRecord.imei == imei)
            .order_by(ArchivedRecord.archived_at.desc(), ArchivedRecord.id.desc())
        )
        return list(result.scalars().all())

    async def list_archived(
        self,
        limit: int = 100,
        offset: int = 0,
        table: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> List[ArchivedRecord]:
        query = select(ArchivedRecord)
        if table:
            query = query.where(ArchivedRecord.original_table == table)
        if reason:
            query = query.where(ArchivedRecord.archive_reason == reason)
        query = query.order_by(ArchivedRecord.archived_at.desc(), ArchivedRecord.id.desc())
        result = await self.db.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def stats(self, now: Optional[datetime] = None) -> ArchiveStats:
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        async def count_since(since: datetime) -> int:
            return await self.db.scalar(
                select(func.count(ArchivedRecord.id)).where(ArchivedRecord.archived_at >= since)
            ) or 0

        total = await self.db.scalar(select(func.count(ArchivedRecord.id))) or 0
        by_table_result = await self.db.execute(
            select(ArchivedRecord.original_table, func.count(ArchivedRecord.id))
            .group_by(ArchivedRecord.original_table)
        )

        return ArchiveStats(
            total_archived=total,
            archived_today=await count_since(start_of_day),
            archived_this_week=await count_since(now - timedelta(days=7)),
            archived_this_month=await count_since(now - timedelta(days=30)),
            by_table={table: count for table, count in by_table_result.all()},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _inventory_skus(self, imei: str) -> Set[Optional[str]]:
        result = await self.db.execute(
            select(DeviceUnit.inventory_sku).where(DeviceUnit.imei == imei)
        )
        return {row[0] for row in result.all()}

    @staticmethod
    def _wrap(operation: str, imei: Optional[str], error: Exception) -> ArchivalError:
        if isinstance(error, ArchivalError):
            return error
        return ArchivalError(
            f"Failed to {operation} IMEI data" if imei else f"Failed to {operation}",
            context={"imei": imei, "operation": operation},
            original_exception=error
        )
