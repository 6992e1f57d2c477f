"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, portable column types and shared enums
    queue_item: Durable work queue (QueueItem)
    batch: Bulk submission tracking (QueueBatch)
    device: Device state, match results, inspection history, inventory rollups
    catalog: Master SKU catalog (SkuMaster)
    audit: Archive snapshots and the append-only data log

Database Schema:
    PostgreSQL in production (JSONB, BIGINT keys); the same models run on
    SQLite for tests through type variants declared in ``models.base``.

Usage:
    from models import QueueItem, DeviceUnit, SkuMaster
    from models.base import QueueStatus

Relationships (by natural key, no foreign keys):
    - QueueItem.batch_id → QueueBatch.batch_id
    - DeviceUnit.imei ↔ SkuMatchResult.imei ↔ DeviceTest.imei
    - DeviceUnit.inventory_sku → InventoryRollup.sku
"""

from models.base import (
    Base,
    QueueStatus,
    BatchStatus,
    WorkingStatus,
    ProductCategory,
    MatchMethod,
    MatchStatus,
)
from models.queue_item import QueueItem
from models.batch import QueueBatch
from models.device import DeviceUnit, SkuMatchResult, DeviceTest, InventoryRollup
from models.catalog import SkuMaster
from models.audit import ArchivedRecord, DataLogRecord

__all__ = [
    "Base",
    "QueueStatus",
    "BatchStatus",
    "WorkingStatus",
    "ProductCategory",
    "MatchMethod",
    "MatchStatus",
    "QueueItem",
    "QueueBatch",
    "DeviceUnit",
    "SkuMatchResult",
    "DeviceTest",
    "InventoryRollup",
    "SkuMaster",
    "ArchivedRecord",
    "DataLogRecord",
]
