"""
Batch tracking for bulk submissions
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, case
from models.base import BatchStatus, utcnow
from models.batch import QueueBatch
from models.queue_item import QueueItem
from schemas.queue import BatchProgress
import logging
import secrets
import time

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    """batch_<epoch-ms>_<9 hex chars>"""
    return f"batch_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class BatchTracker:
    """
    Maintains per-batch progress counters.

    Counters are changed with single UPDATE statements
    (``processed_items = processed_items + 1``) so concurrent workers
    finishing members of the same batch never lose an increment.
    Nothing here commits; callers fold these writes into their own
    transaction.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def create(self, source: str, total_items: int) -> str:
        batch = QueueBatch(
            batch_id=new_batch_id(),
            source=source,
            total_items=total_items,
            processed_items=0,
            failed_items=0,
            status=BatchStatus.ACTIVE,
        )
        self.db.add(batch)
        await self.db.flush()
        logger.info(f"Created batch {batch.batch_id} ({total_items} items from {source})")
        return batch.batch_id

    async def record_outcome(self, batch_id: Optional[str], succeeded: bool):
        """Count one member reaching a terminal state; closes the batch when all members have."""
        if not batch_id:
            return

        counter = QueueBatch.processed_items if succeeded else QueueBatch.failed_items
        await self.db.execute(
            update(QueueBatch)
            .where(QueueBatch.batch_id == batch_id)
            .values({counter: counter + 1, QueueBatch.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(QueueBatch)
            .where(
                QueueBatch.batch_id == batch_id,
                QueueBatch.processed_items + QueueBatch.failed_items >= QueueBatch.total_items,
            )
            .values(status=BatchStatus.CLOSED)
            .execution_options(synchronize_session=False)
        )

    async def reopen_failed(self, batch_id: Optional[str], count: int):
        """Members that were terminally failed were reset to pending."""
        if not batch_id or count <= 0:
            return
        await self.db.execute(
            update(QueueBatch)
            .where(QueueBatch.batch_id == batch_id)
            .values(
                failed_items=case(
                    (QueueBatch.failed_items > count, QueueBatch.failed_items - count),
                    else_=0,
                ),
                status=BatchStatus.ACTIVE,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def get_progress(self, batch_id: str) -> Optional[BatchProgress]:
        result = await self.db.execute(
            select(QueueBatch)
            .where(QueueBatch.batch_id == batch_id)
            .execution_options(populate_existing=True)
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            return None

        counts_result = await self.db.execute(
            select(QueueItem.status, func.count(QueueItem.id))
            .where(QueueItem.batch_id == batch_id)
            .group_by(QueueItem.status)
        )
        status_counts = {status.value: count for status, count in counts_result.all()}

        done = batch.processed_items + batch.failed_items
        progress = round(done / batch.total_items * 100, 2) if batch.total_items else 100.0

        return BatchProgress(
            batch_id=batch.batch_id,
            source=batch.source,
            status=batch.status,
            total_items=batch.total_items,
            processed_items=batch.processed_items,
            failed_items=batch.failed_items,
            is_finished=batch.is_finished,
            progress=progress,
            status_counts=status_counts,
            created_at=batch.created_at,
        )
