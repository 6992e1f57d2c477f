from sqlalchemy import Column, Integer, String, DateTime, Text, Index, CheckConstraint
from models.base import Base, BigIntPK, JSONType, QueueStatus, enum_column, utcnow


class QueueItem(Base):
    """
    One unit of ingestion work: a raw inspection payload awaiting processing.

    Lifecycle:
    - created ``pending``
    - claimed by exactly one worker (``processing``)
    - ends ``completed`` or ``failed``; ``failed`` may be reset to ``pending``

    Retry state lives on the row so it survives worker restarts.
    """
    __tablename__ = "queue_items"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    raw_payload = Column(JSONType, nullable=False)

    # State machine
    status = Column(enum_column(QueueStatus), default=QueueStatus.PENDING, nullable=False, index=True)
    priority = Column(Integer, default=5, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    error_message = Column(Text, nullable=True)

    # Origin
    source = Column(String(100), default="bulk-add", nullable=False, index=True)
    batch_id = Column(String(64), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_queue_claim_order", "status", "priority", "created_at", "id"),
        CheckConstraint("max_retries >= 1", name="ck_queue_max_retries_positive"),
        CheckConstraint("retry_count <= max_retries", name="ck_queue_retry_bound"),
    )

    def __repr__(self):
        return f"<QueueItem id={self.id} status={self.status} retries={self.retry_count}/{self.max_retries}>"
