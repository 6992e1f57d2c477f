import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from core.config import settings
from core.exceptions import ArchivalError
from ingestion.scheduler import HousekeepingScheduler


def make_scheduler(client=None):
    scheduler = HousekeepingScheduler(MagicMock(), client=client)
    scheduler.scheduler = MagicMock()
    return scheduler


def registered_ids(scheduler):
    return [call.kwargs["id"] for call in scheduler.scheduler.add_job.call_args_list]


def test_scheduler_initialization():
    scheduler = HousekeepingScheduler(MagicMock())
    assert scheduler.scheduler is not None
    assert scheduler.client is None


def test_housekeeping_jobs_registered():
    scheduler = make_scheduler()
    scheduler.start()

    assert registered_ids(scheduler) == ["queue_cleanup", "requeue_stale"]
    scheduler.scheduler.start.assert_called_once()


def test_station_sync_needs_client_and_stations(monkeypatch):
    monkeypatch.setattr(settings, "PHONECHECK_STATIONS", "station-1, station-2")

    scheduler = make_scheduler(client=MagicMock())
    scheduler.start()

    assert "station_sync" in registered_ids(scheduler)
    assert settings.station_list == ["station-1", "station-2"]


def test_stop_only_shuts_down_running_scheduler():
    scheduler = make_scheduler()
    scheduler.scheduler.running = False
    scheduler.stop()
    scheduler.scheduler.shutdown.assert_not_called()

    scheduler.scheduler.running = True
    scheduler.stop()
    scheduler.scheduler.shutdown.assert_called_once_with(wait=False)


@pytest.mark.asyncio
async def test_cleanup_job_logs_and_swallows_archival_errors():
    session = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session

    with patch("ingestion.scheduler.ArchivalManager") as manager_cls:
        manager_cls.return_value.archive_completed_queue_items = AsyncMock(
            side_effect=ArchivalError("Failed to cleanup")
        )
        scheduler = HousekeepingScheduler(factory)

        # must not raise
        await scheduler.cleanup_job()

        manager_cls.return_value.archive_completed_queue_items.assert_awaited_once_with(
            settings.CLEANUP_OLDER_THAN_DAYS
        )


@pytest.mark.asyncio
async def test_station_sync_job_runs_every_station(monkeypatch):
    monkeypatch.setattr(settings, "PHONECHECK_STATIONS", "a,b")

    with patch("ingestion.scheduler.StationSync") as sync_cls:
        sync_cls.return_value.sync = AsyncMock(return_value=None)
        scheduler = HousekeepingScheduler(MagicMock(), client=MagicMock())
        await scheduler.station_sync_job()

    stations = [call.args[0] for call in sync_cls.return_value.sync.await_args_list]
    assert stations == ["a", "b"]
