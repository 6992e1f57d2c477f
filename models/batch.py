from sqlalchemy import Column, Integer, String, DateTime
from models.base import Base, BigIntPK, BatchStatus, enum_column, utcnow


class QueueBatch(Base):
    """
    Groups the queue items created by one bulk submission.

    Counters only move when a member reaches a terminal state:
    ``processed_items`` on completion, ``failed_items`` on terminal failure.
    """
    __tablename__ = "queue_batches"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    batch_id = Column(String(64), unique=True, nullable=False, index=True)
    source = Column(String(100), nullable=False)

    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)

    status = Column(enum_column(BatchStatus), default=BatchStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_finished(self) -> bool:
        return self.processed_items + self.failed_items >= self.total_items
