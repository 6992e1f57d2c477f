import logging
from datetime import date
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.exceptions import IngestionException
from ingestion.archival import ArchivalManager
from ingestion.queue.store import QueueStore
from ingestion.extractors.phonecheck import PhonecheckClient
from ingestion.extractors.station_sync import StationSync

logger = logging.getLogger(__name__)


class HousekeepingScheduler:
    """
    Periodic maintenance jobs.

    Jobs:
    - queue_cleanup: archive and remove completed items older than CLEANUP_OLDER_THAN_DAYS
    - requeue_stale: release items stuck in processing
    - station_sync: pull today's devices for PHONECHECK_STATIONS (only with a client)
    """

    def __init__(self, session_factory: async_sessionmaker, client: Optional[PhonecheckClient] = None):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory
        self.client = client

    async def cleanup_job(self):
        """Archive-then-delete completed queue rows"""
        logger.info("Scheduler: starting queue cleanup")
        async with self.session_factory() as session:
            try:
                removed = await ArchivalManager(session, archived_by="scheduler").archive_completed_queue_items(
                    settings.CLEANUP_OLDER_THAN_DAYS
                )
                logger.info(f"Scheduler: cleanup removed {removed} completed items")
            except IngestionException as e:
                logger.error(f"Scheduler: cleanup failed - {e}", extra={"error_context": e.to_dict()})

    async def requeue_stale_job(self):
        """Release abandoned claims"""
        async with self.session_factory() as session:
            try:
                await QueueStore(session).requeue_stale(settings.STALE_PROCESSING_SECONDS)
            except IngestionException as e:
                logger.error(f"Scheduler: stale requeue failed - {e}", extra={"error_context": e.to_dict()})

    async def station_sync_job(self):
        """Enqueue today's devices for each configured station"""
        sync = StationSync(self.client, self.session_factory)
        today = date.today().isoformat()
        for station in settings.station_list:
            try:
                await sync.sync(station, today)
            except IngestionException as e:
                logger.error(f"Scheduler: station sync failed for {station} - {e}", extra={"error_context": e.to_dict()})

    def start(self):
        """Register jobs and start the scheduler"""
        self.scheduler.add_job(
            self.cleanup_job,
            trigger=IntervalTrigger(minutes=settings.CLEANUP_INTERVAL_MINUTES),
            id="queue_cleanup",
            replace_existing=True
        )
        self.scheduler.add_job(
            self.requeue_stale_job,
            trigger=IntervalTrigger(minutes=settings.STALE_CHECK_INTERVAL_MINUTES),
            id="requeue_stale",
            replace_existing=True
        )
        if self.client is not None and settings.station_list:
            self.scheduler.add_job(
                self.station_sync_job,
                trigger=IntervalTrigger(minutes=settings.STATION_SYNC_INTERVAL_MINUTES),
                id="station_sync",
                replace_existing=True
            )
        self.scheduler.start()
        logger.info("Housekeeping scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Housekeeping scheduler stopped")
