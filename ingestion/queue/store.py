"""
Durable priority work queue backed by the queue_items table
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from core.config import settings
from core.exceptions import ValidationError, InvalidTransitionError
from models.base import QueueStatus, utcnow
from models.queue_item import QueueItem
from schemas.queue import EnqueueResult, RejectedItem, QueueStats
from ingestion.queue.batches import BatchTracker
from ingestion.audit import DataLogWriter, STATUS_FAILED
from ingestion.transformers.normalizer import DeviceNormalizer
import logging

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 5
MAX_IMEI_LENGTH = 32


class QueueStore:
    """
    Queue state machine over the database.

    Responsibilities:
    - Enqueue validated payloads as one batch
    - Atomic claim (conditional UPDATE, exactly-one-row check)
    - Completion, failure with bounded retries, manual reset
    - Stats and listings

    Every transition is a conditional UPDATE guarded by the current
    status, so two workers can never both move the same item. No
    in-process locks are involved.

    Methods that take ``commit`` commit by default; pass ``commit=False``
    to fold the transition into a larger transaction.
    """

    def __init__(self, db_session: AsyncSession, normalizer: Optional[DeviceNormalizer] = None):
        self.db = db_session
        self.normalizer = normalizer or DeviceNormalizer()
        self.batches = BatchTracker(db_session)
        self.data_log = DataLogWriter(db_session)

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        items: List[Dict[str, Any]],
        source: str = "bulk-add",
        priority: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> EnqueueResult:
        """
        Validate and persist a bulk submission.

        Items without an IMEI are rejected and never inserted. If nothing
        is acceptable, no batch and no rows are created.

        Raises:
            ValidationError: empty submission, bad max_retries, or no acceptable item
        """
        priority = settings.QUEUE_DEFAULT_PRIORITY if priority is None else priority
        max_retries = settings.QUEUE_MAX_RETRIES if max_retries is None else max_retries

        if max_retries < 1:
            raise ValidationError(
                "max_retries must be at least 1",
                context={"field_name": "max_retries", "value": max_retries}
            )
        if not items:
            raise ValidationError("No items submitted", context={"field_name": "items"})

        accepted: List[Dict[str, Any]] = []
        rejected: List[RejectedItem] = []
        for index, payload in enumerate(items):
            imei = self.normalizer.extract_imei(payload)
            if not isinstance(payload, dict):
                rejected.append(RejectedItem(index=index, reason="Item is not a JSON object"))
            elif not imei:
                rejected.append(RejectedItem(index=index, reason="Missing IMEI"))
            elif len(imei) > MAX_IMEI_LENGTH:
                rejected.append(RejectedItem(index=index, reason=f"IMEI longer than {MAX_IMEI_LENGTH} characters"))
            else:
                accepted.append(payload)

        if not accepted:
            raise ValidationError(
                "No valid items to enqueue",
                context={
                    "field_name": "imei",
                    "reasons": [r.model_dump() for r in rejected[:50]],
                }
            )

        try:
            batch_id = await self.batches.create(source, len(accepted))

            now = utcnow()
            rows = [
                QueueItem(
                    raw_payload=payload,
                    status=QueueStatus.PENDING,
                    priority=priority,
                    retry_count=0,
                    max_retries=max_retries,
                    source=source,
                    batch_id=batch_id,
                    created_at=now,
                    updated_at=now,
                )
                for payload in accepted
            ]
            self.db.add_all(rows)
            await self.db.flush()
            item_ids = [row.id for row in rows]
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if rejected:
            logger.warning(f"Batch {batch_id}: rejected {len(rejected)} of {len(items)} items")
        logger.info(f"Enqueued {len(accepted)} items as {batch_id} (source={source}, priority={priority})")

        return EnqueueResult(
            batch_id=batch_id,
            accepted_count=len(accepted),
            rejected_count=len(rejected),
            item_ids=item_ids,
            rejected=rejected,
        )

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim_next(self) -> Optional[QueueItem]:
        """
        Claim the highest-priority, oldest pending item.

        A lost race (another worker claimed the candidate first) moves on
        to the next candidate.
        """
        for _ in range(CLAIM_ATTEMPTS):
            candidate_id = await self.db.scalar(
                select(QueueItem.id)
                .where(
                    QueueItem.status == QueueStatus.PENDING,
                    QueueItem.retry_count < QueueItem.max_retries,
                )
                .order_by(QueueItem.priority.asc(), QueueItem.created_at.asc(), QueueItem.id.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            if candidate_id is None:
                await self.db.commit()
                return None

            item = await self.claim(candidate_id)
            if item is not None:
                return item
            logger.debug(f"Lost claim race for queue item {candidate_id}")
        return None

    async def claim(self, item_id: int) -> Optional[QueueItem]:
        """Claim a specific item; None means it was not pending (already claimed or terminal)."""
        result = await self.db.execute(
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.retry_count < QueueItem.max_retries,
            )
            .values(status=QueueStatus.PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            return None
        return await self.get(item_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def complete(self, item_id: int, commit: bool = True) -> QueueItem:
        """processing -> completed, counted against the item's batch."""
        now = utcnow()
        result = await self.db.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.PROCESSING)
            .values(
                status=QueueStatus.COMPLETED,
                processed_at=now,
                updated_at=now,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Queue item {item_id} is not processing",
                context={"item_id": item_id, "transition": "complete"}
            )

        item = await self.get(item_id)
        await self.batches.record_outcome(item.batch_id, succeeded=True)
        if commit:
            await self.db.commit()
        return item

    async def fail(
        self,
        item_id: int,
        reason: str,
        processing_time_ms: Optional[int] = None,
        commit: bool = True,
    ) -> QueueItem:
        """
        Record a failed attempt.

        The retry counter is incremented; the item goes back to pending
        while attempts remain and becomes terminally failed once
        ``retry_count`` reaches ``max_retries``. Terminal failures are
        counted against the batch and written to the data log.
        """
        item = await self.get(item_id)
        if item is None or item.status != QueueStatus.PROCESSING:
            raise InvalidTransitionError(
                f"Queue item {item_id} is not processing",
                context={"item_id": item_id, "transition": "fail"}
            )

        retry_count = item.retry_count + 1
        terminal = retry_count >= item.max_retries
        now = utcnow()

        result = await self.db.execute(
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.PROCESSING,
                QueueItem.retry_count == item.retry_count,
            )
            .values(
                status=QueueStatus.FAILED if terminal else QueueStatus.PENDING,
                retry_count=retry_count,
                error_message=reason,
                processed_at=now if terminal else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Queue item {item_id} changed while recording failure",
                context={"item_id": item_id, "transition": "fail"}
            )

        item = await self.get(item_id)
        if terminal:
            await self.batches.record_outcome(item.batch_id, succeeded=False)
            await self.data_log.record(
                item,
                STATUS_FAILED,
                imei=self.normalizer.extract_imei(item.raw_payload),
                error_message=reason,
                processing_time_ms=processing_time_ms,
            )
            logger.error(f"Queue item {item_id} failed permanently after {retry_count} attempts: {reason}")
        else:
            logger.warning(f"Queue item {item_id} attempt {retry_count}/{item.max_retries} failed: {reason}")

        if commit:
            await self.db.commit()
        return item

    async def reset_to_pending(self, item_id: int) -> QueueItem:
        """failed -> pending with a fresh retry budget."""
        item = await self.get(item_id)
        if item is None or item.status != QueueStatus.FAILED:
            raise InvalidTransitionError(
                f"Queue item {item_id} is not failed",
                context={"item_id": item_id, "transition": "reset"}
            )

        result = await self.db.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.FAILED)
            .values(
                status=QueueStatus.PENDING,
                retry_count=0,
                error_message=None,
                processed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidTransitionError(
                f"Queue item {item_id} changed while resetting",
                context={"item_id": item_id, "transition": "reset"}
            )

        await self.batches.reopen_failed(item.batch_id, 1)
        await self.db.commit()
        return await self.get(item_id)

    async def retry_failed(self) -> int:
        """Reset every failed item to pending. Returns the number reset."""
        result = await self.db.execute(
            select(QueueItem.batch_id, func.count(QueueItem.id))
            .where(QueueItem.status == QueueStatus.FAILED)
            .group_by(QueueItem.batch_id)
        )
        per_batch = result.all()

        reset = await self.db.execute(
            update(QueueItem)
            .where(QueueItem.status == QueueStatus.FAILED)
            .values(
                status=QueueStatus.PENDING,
                retry_count=0,
                error_message=None,
                processed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        for batch_id, count in per_batch:
            await self.batches.reopen_failed(batch_id, count)
        await self.db.commit()

        logger.info(f"Reset {reset.rowcount} failed items to pending")
        return reset.rowcount

    async def requeue_stale(self, older_than_seconds: Optional[int] = None) -> int:
        """
        Release items stuck in processing (crashed worker).

        Each release counts as a failed attempt so a payload that keeps
        killing its worker still ends up failed.
        """
        older_than_seconds = older_than_seconds or settings.STALE_PROCESSING_SECONDS
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)

        result = await self.db.execute(
            select(QueueItem.id)
            .where(QueueItem.status == QueueStatus.PROCESSING, QueueItem.updated_at < cutoff)
            .order_by(QueueItem.id)
        )
        stale_ids = [row[0] for row in result.all()]

        released = 0
        for item_id in stale_ids:
            try:
                await self.fail(item_id, f"Processing abandoned after {older_than_seconds}s")
                released += 1
            except InvalidTransitionError:
                # finished or released concurrently
                await self.db.rollback()

        if released:
            logger.warning(f"Released {released} stale processing items")
        return released

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, item_id: int) -> Optional[QueueItem]:
        result = await self.db.execute(
            select(QueueItem)
            .where(QueueItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_items(self, status: Optional[QueueStatus] = None, limit: int = 100) -> List[QueueItem]:
        query = select(QueueItem)
        if status is not None:
            query = query.where(QueueItem.status == status)
        query = query.order_by(QueueItem.created_at.desc(), QueueItem.id.desc()).limit(limit)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def stats(self) -> QueueStats:
        result = await self.db.execute(
            select(QueueItem.status, func.count(QueueItem.id)).group_by(QueueItem.status)
        )
        counts = {status.value: count for status, count in result.all()}

        oldest_pending = await self.db.scalar(
            select(func.min(QueueItem.created_at)).where(QueueItem.status == QueueStatus.PENDING)
        )

        return QueueStats(
            total=sum(counts.values()),
            pending=counts.get(QueueStatus.PENDING.value, 0),
            processing=counts.get(QueueStatus.PROCESSING.value, 0),
            completed=counts.get(QueueStatus.COMPLETED.value, 0),
            failed=counts.get(QueueStatus.FAILED.value, 0),
            oldest_pending=oldest_pending,
        )
