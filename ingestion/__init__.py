"""
Queue-driven ingestion pipeline for device inspection results.

This package contains every component between an accepted payload and the
reconciled inventory tables:

Modules:
    dispatcher: Worker loop (claim, enrich, normalize, match, load, settle) and worker pool
    archival: Archive-before-delete, restore and queue cleanup
    audit: Append-only data log and the metrics built on it
    scheduler: APScheduler housekeeping jobs (cleanup, stale recovery, station sync)

Subpackages:
    queue: Durable priority queue store and batch progress tracking
    extractors: Diagnostics provider client and station sync
    transformers: Payload normalizer, SKU key generator and catalog matcher
    loaders: Idempotent device/match/test upserts and inventory rollups

Architecture:
    Each queue item moves pending -> processing -> completed | failed.

    1. Claim - conditional update, exactly one worker wins
    2. Transform - raw payload to DeviceRecord, SKU key, catalog match
    3. Load - upserts keyed on IMEI plus completion, committed together

    A failing item is recorded in its own transaction and retried until
    its retry budget is spent.

Usage:
    from ingestion.queue.store import QueueStore
    from ingestion.dispatcher import WorkerPool

Example:
    async with async_session_maker() as session:
        result = await QueueStore(session).enqueue(payloads, source="bulk-add")

    pool = WorkerPool(async_session_maker, size=4)
    await pool.run()

Error Handling:
    All components raise the structured exceptions in core.exceptions.
"""

__all__ = [
    "QueueStore",
    "BatchTracker",
    "QueueDispatcher",
    "WorkerPool",
    "ArchivalManager",
    "DataLogWriter",
    "HousekeepingScheduler",
    "PhonecheckClient",
    "StationSync",
    "DeviceNormalizer",
    "SkuMatcher",
    "DeviceLoader",
]
