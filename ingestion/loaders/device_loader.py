"""
Persist processed devices with upsert logic (idempotency)
"""

from typing import Optional, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete, update
from core.database import dialect_insert
from core.exceptions import UpsertError, DatabaseError
from models.base import WorkingStatus, MatchStatus, utcnow
from models.device import DeviceUnit, SkuMatchResult, DeviceTest, InventoryRollup
from schemas.device import DeviceRecord
from ingestion.transformers.sku_matcher import MatchOutcome
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

TEST_RESULTS = {
    WorkingStatus.YES: "PASSED",
    WorkingStatus.NO: "FAILED",
    WorkingStatus.PENDING: "PENDING",
}


class DeviceLoader:
    """
    Write a processed device into its tables with INSERT ... ON CONFLICT.

    Ensures:
    - One device_records row and one sku_match_results row per IMEI
    - One device_tests row per (IMEI, queue item), so retries never duplicate
    - Inventory rollups recomputed by counting, never incremented

    The loader does not commit; the caller owns the transaction so the
    writes land together with the queue item's completion.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def load(self, record: DeviceRecord, outcome: MatchOutcome, queue_item_id: int) -> str:
        """
        Upsert everything derived from one queue item.

        Returns:
            The SKU the unit is now counted under
        """
        inventory_sku = self.inventory_sku_for(outcome)
        previous_sku = await self._current_inventory_sku(record.imei)

        try:
            await self.upsert_device(record, inventory_sku, queue_item_id)
            await self.upsert_match(record.imei, outcome)
            await self.upsert_test(record, queue_item_id)
        except SQLAlchemyError as e:
            raise UpsertError(
                f"Failed to upsert device {record.imei}",
                context={"imei": record.imei, "queue_item_id": queue_item_id},
                original_exception=e
            )

        await self.recompute_rollups({inventory_sku, previous_sku})
        return inventory_sku

    @staticmethod
    def inventory_sku_for(outcome: MatchOutcome) -> str:
        """Matched units count under the catalog SKU, everything else under its generated key."""
        if outcome.status == MatchStatus.MATCHED and outcome.matched_sku:
            return outcome.matched_sku
        return outcome.original_sku

    async def _current_inventory_sku(self, imei: str) -> Optional[str]:
        result = await self.db.execute(
            select(DeviceUnit.inventory_sku).where(DeviceUnit.imei == imei)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    async def upsert_device(self, record: DeviceRecord, inventory_sku: str, queue_item_id: int):
        now = utcnow()
        values = record.to_unit_values()
        values.update(
            inventory_sku=inventory_sku,
            last_queue_item_id=queue_item_id,
            created_at=now,
            updated_at=now,
        )

        stmt = dialect_insert(self.db, DeviceUnit.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["imei"],
            set_={
                column: getattr(stmt.excluded, column)
                for column in values
                if column not in ("imei", "created_at")
            }
        )
        await self.db.execute(stmt)

    async def upsert_match(self, imei: str, outcome: MatchOutcome):
        now = utcnow()
        stmt = dialect_insert(self.db, SkuMatchResult.__table__).values(
            imei=imei,
            original_sku=outcome.original_sku,
            matched_sku=outcome.matched_sku,
            match_score=outcome.score,
            match_method=outcome.method,
            match_status=outcome.status,
            match_notes=outcome.notes,
            category=outcome.category.value,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["imei"],
            set_={
                "original_sku": stmt.excluded.original_sku,
                "matched_sku": stmt.excluded.matched_sku,
                "match_score": stmt.excluded.match_score,
                "match_method": stmt.excluded.match_method,
                "match_status": stmt.excluded.match_status,
                "match_notes": stmt.excluded.match_notes,
                "category": stmt.excluded.category,
                "updated_at": stmt.excluded.updated_at,
            }
        )
        await self.db.execute(stmt)

    async def upsert_test(self, record: DeviceRecord, queue_item_id: int):
        stmt = dialect_insert(self.db, DeviceTest.__table__).values(
            imei=record.imei,
            queue_item_id=queue_item_id,
            test_type="PHONECHECK",
            test_result=TEST_RESULTS[record.working_status],
            battery_health=record.battery_health,
            notes=record.notes,
            tested_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["imei", "queue_item_id"],
            set_={
                "test_result": stmt.excluded.test_result,
                "battery_health": stmt.excluded.battery_health,
                "notes": stmt.excluded.notes,
                "tested_at": stmt.excluded.tested_at,
            }
        )
        await self.db.execute(stmt)

    # ------------------------------------------------------------------
    # Rollups
    # ------------------------------------------------------------------

    async def recompute_rollups(self, skus: Set[Optional[str]]):
        """
        Recount the given SKUs from device_records; empty SKUs lose their rollup row.

        Each SKU's rollup row is locked before counting, so concurrent
        transactions touching the same SKU recount one after the other and
        the later count sees the earlier one's committed units. SKUs are
        locked in sorted order.
        """
        await self.db.flush()
        for sku in sorted(s for s in skus if s):
            try:
                await self._lock_rollup(sku)
                await self._recount(sku)
            except SQLAlchemyError as e:
                raise DatabaseError(
                    f"Failed to recompute inventory rollup for {sku}",
                    context={"operation": "UPSERT", "table_name": InventoryRollup.__tablename__, "sku": sku},
                    original_exception=e
                )

    async def _recount(self, sku: str):
        result = await self.db.execute(
            select(DeviceUnit.working_status, func.count(DeviceUnit.id))
            .where(DeviceUnit.inventory_sku == sku)
            .group_by(DeviceUnit.working_status)
        )
        counts = {status: count for status, count in result.all()}
        total = sum(counts.values())

        if total == 0:
            await self.db.execute(delete(InventoryRollup).where(InventoryRollup.sku == sku))
            return

        await self.db.execute(
            update(InventoryRollup)
            .where(InventoryRollup.sku == sku)
            .values(
                total_units=total,
                working_units=counts.get(WorkingStatus.YES, 0),
                non_working_units=counts.get(WorkingStatus.NO, 0),
                pending_units=counts.get(WorkingStatus.PENDING, 0),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def _lock_rollup(self, sku: str):
        # a concurrent insert of the same sku blocks here until it commits
        stmt = dialect_insert(self.db, InventoryRollup.__table__).values(
            sku=sku,
            total_units=0,
            working_units=0,
            non_working_units=0,
            pending_units=0,
            updated_at=utcnow(),
        )
        await self.db.execute(stmt.on_conflict_do_nothing(index_elements=["sku"]))
        await self.db.execute(
            select(InventoryRollup.id)
            .where(InventoryRollup.sku == sku)
            .with_for_update()
        )
