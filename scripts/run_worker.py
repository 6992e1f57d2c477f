"""
Run the queue worker pool until SIGINT/SIGTERM.

Usage:
    python scripts/run_worker.py [--workers N] [--no-scheduler]
"""

import argparse
import asyncio
import logging
import signal
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from ingestion.dispatcher import WorkerPool
from ingestion.extractors.phonecheck import PhonecheckClient
from ingestion.scheduler import HousekeepingScheduler

logger = logging.getLogger(__name__)


async def run_worker(workers: int, with_scheduler: bool):
    client = PhonecheckClient() if settings.phonecheck_configured else None
    if client is None:
        logger.warning("Diagnostics provider not configured; payloads are processed without enrichment")

    pool = WorkerPool(async_session_maker, size=workers, client=client)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: pool.stop())

    scheduler = None
    if with_scheduler and settings.SCHEDULER_ENABLED:
        scheduler = HousekeepingScheduler(async_session_maker, client=client)
        scheduler.start()

    try:
        await pool.run()
    finally:
        if scheduler is not None:
            scheduler.stop()
        if client is not None:
            await client.close()
        await engine.dispose()
        logger.info("Worker shut down cleanly")


def main():
    parser = argparse.ArgumentParser(description="Process the IMEI ingestion queue")
    parser.add_argument("--workers", type=int, default=settings.WORKER_COUNT, help="Number of concurrent dispatchers")
    parser.add_argument("--no-scheduler", action="store_true", help="Do not run housekeeping jobs in this process")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run_worker(args.workers, not args.no_scheduler))


if __name__ == "__main__":
    main()
