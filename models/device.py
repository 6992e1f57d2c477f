from sqlalchemy import Column, String, Integer, Float, DateTime, Text, Index, BigInteger
from models.base import (
    Base, BigIntPK, JSONType, WorkingStatus, MatchMethod, MatchStatus,
    enum_column, utcnow,
)


class DeviceUnit(Base):
    """
    Canonical state of one physical unit, keyed by IMEI.

    Re-ingesting an IMEI updates this row in place; there is never a second
    row for the same IMEI.
    """
    __tablename__ = "device_records"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    imei = Column(String(32), unique=True, nullable=False, index=True)

    brand = Column(String(100), nullable=True)
    model = Column(String(200), nullable=True)
    model_number = Column(String(100), nullable=True)
    storage = Column(String(50), nullable=True)
    color = Column(String(100), nullable=True)
    carrier = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    working_status = Column(enum_column(WorkingStatus), default=WorkingStatus.PENDING, nullable=False)
    battery_health = Column(Integer, nullable=True)
    condition_grade = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    source_timestamps = Column(JSONType, nullable=True)

    # SKU the unit is counted under in inventory_rollups
    inventory_sku = Column(String(200), nullable=True, index=True)
    last_queue_item_id = Column(BigInteger, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SkuMatchResult(Base):
    """Current best catalog match for an IMEI; superseded on every recompute."""
    __tablename__ = "sku_match_results"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    imei = Column(String(32), unique=True, nullable=False, index=True)

    original_sku = Column(String(200), nullable=False)
    matched_sku = Column(String(200), nullable=True)
    match_score = Column(Float, nullable=False, default=0.0)
    match_method = Column(enum_column(MatchMethod), nullable=False)
    match_status = Column(enum_column(MatchStatus), nullable=False, index=True)
    match_notes = Column(Text, nullable=True)
    category = Column(String(20), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class DeviceTest(Base):
    """
    Inspection history, one row per (IMEI, queue item).

    A retried queue item overwrites its own row rather than adding another.
    """
    __tablename__ = "device_tests"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    imei = Column(String(32), nullable=False, index=True)
    queue_item_id = Column(BigInteger, nullable=False)

    test_type = Column(String(50), nullable=False, default="PHONECHECK")
    test_result = Column(String(20), nullable=False)
    battery_health = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    tested_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_device_test_imei_item", "imei", "queue_item_id", unique=True),
    )


class InventoryRollup(Base):
    """
    Per-SKU unit counts derived from device_records.

    Always recomputed by counting, so reprocessing a unit cannot
    double-count it.
    """
    __tablename__ = "inventory_rollups"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    sku = Column(String(200), unique=True, nullable=False, index=True)

    total_units = Column(Integer, nullable=False, default=0)
    working_units = Column(Integer, nullable=False, default=0)
    non_working_units = Column(Integer, nullable=False, default=0)
    pending_units = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
