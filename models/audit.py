from sqlalchemy import Column, String, Integer, DateTime, Text, Index, BigInteger
from models.base import Base, BigIntPK, JSONType, utcnow


class ArchivedRecord(Base):
    """
    Snapshot of a live row taken before it was deleted.

    Written only by the archival manager and never updated; rows leave this
    table only through restore or permanent delete.
    """
    __tablename__ = "imei_archived"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    original_table = Column(String(100), nullable=False, index=True)
    original_id = Column(BigInteger, nullable=False)
    imei = Column(String(32), nullable=True, index=True)
    archived_data = Column(JSONType, nullable=False)

    archived_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    archived_by = Column(String(100), nullable=False, default="system")
    archive_reason = Column(String(100), nullable=False, default="manual_delete", index=True)


class DataLogRecord(Base):
    """
    Append-only audit of every terminal queue outcome.

    Purpose:
    - Trace what was received and what was written for each item
    - Processing time metrics
    """
    __tablename__ = "imei_data_log"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    queue_id = Column(BigInteger, nullable=True, index=True)
    imei = Column(String(32), nullable=True, index=True)
    source = Column(String(100), nullable=True)

    raw_payload = Column(JSONType, nullable=True)
    processed_data = Column(JSONType, nullable=True)

    status = Column(String(20), nullable=False)  # "success" | "failed"
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_data_log_created", "created_at", "status"),
    )
