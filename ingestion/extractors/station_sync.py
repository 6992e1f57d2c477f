"""
Pull a station's tested devices from Phonecheck and enqueue them as one batch
"""

from datetime import date
from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
from ingestion.extractors.phonecheck import PhonecheckClient
from ingestion.queue.store import QueueStore
from schemas.queue import EnqueueResult
import logging

logger = logging.getLogger(__name__)

STATION_SOURCE = "phonecheck-station"


class StationSync:
    """Fetch-then-enqueue for one station and date range."""

    def __init__(self, client: PhonecheckClient, session_factory: async_sessionmaker):
        self.client = client
        self.session_factory = session_factory

    async def sync(
        self,
        station: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> Optional[EnqueueResult]:
        """
        Returns:
            The enqueue result, or None when the provider returned no devices
        """
        start_date = start_date or date.today().isoformat()
        devices = await self.client.get_station_devices(station, start_date, end_date)
        if not devices:
            logger.info(f"No devices for station {station} on {start_date}")
            return None

        async with self.session_factory() as session:
            result = await QueueStore(session).enqueue(
                devices,
                source=STATION_SOURCE,
                priority=priority,
            )

        logger.info(
            f"Station {station}: enqueued {result.accepted_count} devices "
            f"({result.rejected_count} rejected) as {result.batch_id}"
        )
        return result
