"""
Queue Dispatcher - claims queue items and drives them through the pipeline.

Per item:
1. Claim (atomic conditional update)
2. Enrich from the diagnostics API when the payload lacks model data
3. Normalize to a DeviceRecord
4. Generate and match the SKU
5. Persist device, match result, test row and rollups, complete the item,
   count it against its batch and write the data log (one transaction)

Any failure rolls the transaction back and records a failed attempt in a
fresh transaction; the retry counter decides between another attempt and
terminal failure.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging

from core.config import settings
from core.exceptions import InvalidTransitionError, ResourceNotFoundError, IngestionException, RetryableError
from models.queue_item import QueueItem
from ingestion.audit import STATUS_SUCCESS
from ingestion.extractors.phonecheck import PhonecheckClient
from ingestion.loaders.device_loader import DeviceLoader
from ingestion.queue.store import QueueStore
from ingestion.transformers.normalizer import DeviceNormalizer
from ingestion.transformers.sku_generator import generate_sku
from ingestion.transformers.sku_matcher import SkuMatcher

logger = logging.getLogger(__name__)


class QueueDispatcher:
    """
    One worker loop over the queue.

    Responsibilities:
    - Claim, process and settle one item at a time, in claim order
    - Keep each item inside ITEM_PROCESSING_TIMEOUT
    - Never let a single bad item stop the loop
    - Pause before the next claim after a transient (retryable) failure
    - Stop claiming promptly when the stop signal is set; an item already
      in flight is finished first

    Each cycle opens its own sessions, so several dispatchers can share a
    session factory and run concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        client: Optional[PhonecheckClient] = None,
        normalizer: Optional[DeviceNormalizer] = None,
        poll_interval: Optional[float] = None,
        item_timeout: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        name: str = "worker-1",
    ):
        self.session_factory = session_factory
        self.client = client
        self.normalizer = normalizer or DeviceNormalizer()
        self.poll_interval = settings.QUEUE_POLL_INTERVAL if poll_interval is None else poll_interval
        self.item_timeout = item_timeout or settings.ITEM_PROCESSING_TIMEOUT
        self.name = name

        self._stop = stop_event or asyncio.Event()
        self._matcher: Optional[SkuMatcher] = None
        self._matcher_loaded_at = 0.0
        # seconds to wait before the next claim, set by a transient failure
        self.pending_backoff = 0.0

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    def stop(self):
        """Stop claiming new items."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self):
        """Process items until stopped, idling between empty polls."""
        logger.info(f"{self.name}: dispatcher started")
        while not self._stop.is_set():
            try:
                worked = await self.process_next()
            except Exception:
                logger.exception(f"{self.name}: unexpected dispatcher error")
                worked = False

            if self.pending_backoff:
                delay, self.pending_backoff = self.pending_backoff, 0.0
                await self._idle(delay)
            elif not worked:
                await self._idle()
        logger.info(f"{self.name}: dispatcher stopped")

    async def _idle(self, timeout: Optional[float] = None):
        try:
            await asyncio.wait_for(
                self._stop.wait(),
                timeout=self.poll_interval if timeout is None else timeout
            )
        except asyncio.TimeoutError:
            pass

    async def process_next(self) -> bool:
        """
        One dispatch cycle.

        Returns:
            True if an item was claimed (whatever its outcome), False if the queue was empty
        """
        async with self.session_factory() as session:
            item = await QueueStore(session, self.normalizer).claim_next()

        if item is None:
            return False

        await self.process_item(item)
        return True

    # ------------------------------------------------------------------
    # Item processing
    # ------------------------------------------------------------------

    async def process_item(self, item: QueueItem):
        started = time.monotonic()
        logger.debug(f"{self.name}: processing queue item {item.id}")

        try:
            await asyncio.wait_for(self._handle(item, started), timeout=self.item_timeout)
        except Exception as e:
            reason = self.describe_error(e)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            error_context = e.to_dict() if isinstance(e, IngestionException) else {"error": reason}

            if isinstance(e, RetryableError):
                # the item still goes through its retry budget; only the pause differs
                self.pending_backoff = self.backoff_for(e)
                logger.warning(
                    f"{self.name}: queue item {item.id} hit a transient error, "
                    f"pausing {self.pending_backoff}s: {reason}",
                    extra={"error_context": error_context}
                )
            else:
                logger.error(
                    f"{self.name}: queue item {item.id} failed: {reason}",
                    extra={"error_context": error_context}
                )
            await self._record_failure(item, reason, elapsed_ms)

    @staticmethod
    def backoff_for(error: RetryableError) -> float:
        """Provider's Retry-After when given, else the error's retry delay, capped."""
        delay = getattr(error, "retry_after", None) or error.retry_delay
        return min(float(delay), settings.QUEUE_RETRY_BACKOFF_MAX)

    async def _record_failure(self, item: QueueItem, reason: str, elapsed_ms: int):
        async with self.session_factory() as session:
            try:
                await QueueStore(session, self.normalizer).fail(
                    item.id, reason, processing_time_ms=elapsed_ms
                )
            except InvalidTransitionError as e:
                # the claim was released (stale recovery) while this worker held it
                await session.rollback()
                logger.warning(f"{self.name}: could not record failure for item {item.id}: {e.message}")

    async def _handle(self, item: QueueItem, started: float):
        payload = dict(item.raw_payload or {})

        if self.client is not None and self.normalizer.resolve(payload, "model") is None:
            payload = await self._enrich(payload)

        record = self.normalizer.normalize(payload)

        async with self.session_factory() as session:
            try:
                matcher = await self._get_matcher(session)
                outcome = matcher.match(generate_sku(record))

                inventory_sku = await DeviceLoader(session).load(record, outcome, item.id)

                store = QueueStore(session, self.normalizer)
                await store.complete(item.id, commit=False)
                await store.data_log.record(
                    item,
                    STATUS_SUCCESS,
                    imei=record.imei,
                    processed_data={
                        "device": record.model_dump(mode="json"),
                        "original_sku": outcome.original_sku,
                        "matched_sku": outcome.matched_sku,
                        "match_score": outcome.score,
                        "match_status": outcome.status.value,
                        "inventory_sku": inventory_sku,
                    },
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                )
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

        logger.info(
            f"{self.name}: item {item.id} IMEI {record.imei} -> {outcome.original_sku} "
            f"({outcome.status.value}, score={outcome.score:.2f})"
        )

    async def _enrich(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fill gaps from the provider's device detail; payload values win."""
        imei = self.normalizer.extract_imei(payload)
        if not imei:
            return payload
        try:
            details = await self.client.get_device_details(imei)
        except ResourceNotFoundError:
            logger.warning(f"{self.name}: IMEI {imei} unknown to diagnostics provider, using payload as-is")
            return payload

        merged = dict(details)
        merged.update({k: v for k, v in payload.items() if v not in (None, "")})
        return merged

    async def _get_matcher(self, session: AsyncSession) -> SkuMatcher:
        """Catalog snapshot, reloaded every CATALOG_REFRESH_SECONDS."""
        now = time.monotonic()
        if self._matcher is None or now - self._matcher_loaded_at >= settings.CATALOG_REFRESH_SECONDS:
            self._matcher = await SkuMatcher.from_session(session)
            self._matcher_loaded_at = now
        return self._matcher

    def invalidate_catalog(self):
        self._matcher = None

    @staticmethod
    def describe_error(error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return "TimeoutError: item processing timed out"
        message = error.message if isinstance(error, IngestionException) else str(error)
        return f"{type(error).__name__}: {message}"


class WorkerPool:
    """N dispatchers sharing one session factory and one stop signal."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        size: Optional[int] = None,
        client: Optional[PhonecheckClient] = None,
        **dispatcher_kwargs,
    ):
        self._stop = asyncio.Event()
        self.dispatchers: List[QueueDispatcher] = [
            QueueDispatcher(
                session_factory,
                client=client,
                stop_event=self._stop,
                name=f"worker-{i + 1}",
                **dispatcher_kwargs,
            )
            for i in range(size or settings.WORKER_COUNT)
        ]

    async def run(self):
        logger.info(f"Starting worker pool with {len(self.dispatchers)} dispatchers")
        await asyncio.gather(*(d.run() for d in self.dispatchers))

    def stop(self):
        self._stop.set()
