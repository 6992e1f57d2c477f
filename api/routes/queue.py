"""
Queue endpoints: bulk enqueue, listing, stats and admin operations
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from api.dependencies import get_db
from core.config import settings
from models.base import QueueStatus
from schemas.queue import (
    EnqueueRequest,
    EnqueueResult,
    QueueItemResponse,
    QueueStats,
    BatchProgress,
    OperationResult,
)
from ingestion.queue.store import QueueStore
from ingestion.archival import ArchivalManager
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/queue", tags=["Queue"])


@router.post("/items", response_model=EnqueueResult, status_code=202)
async def enqueue_items(
    request: Request,
    body: EnqueueRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Submit raw inspection payloads for processing.

    Items that are not objects or carry no IMEI are reported in ``rejected``
    and never queued.
    A submission with no acceptable item is answered with 422.
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] POST /queue/items - {len(body.items)} items from {body.source}")

    return await QueueStore(db).enqueue(
        body.items,
        source=body.source,
        priority=body.priority,
        max_retries=body.max_retries,
    )


@router.get("/stats", response_model=QueueStats)
async def queue_stats(db: AsyncSession = Depends(get_db)):
    return await QueueStore(db).stats()


@router.get("/items", response_model=List[QueueItemResponse])
async def list_items(
    status: Optional[QueueStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum items returned"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent items first"""
    return await QueueStore(db).list_items(status=status, limit=limit)


@router.post("/items/{item_id}/reset", response_model=QueueItemResponse)
async def reset_item(item_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    """Move one failed item back to pending with a fresh retry budget"""
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] POST /queue/items/{item_id}/reset")
    return await QueueStore(db).reset_to_pending(item_id)


@router.post("/retry-failed", response_model=OperationResult)
async def retry_failed(request: Request, db: AsyncSession = Depends(get_db)):
    request_id = getattr(request.state, "request_id", "-")
    count = await QueueStore(db).retry_failed()
    logger.info(f"[{request_id}] POST /queue/retry-failed - reset {count} items")
    return OperationResult(count=count, message=f"Reset {count} failed items to pending")


@router.post("/clear-completed", response_model=OperationResult)
async def clear_completed(
    request: Request,
    older_than_days: int = Query(
        settings.CLEANUP_OLDER_THAN_DAYS, ge=0, description="Only items processed before this many days ago"
    ),
    db: AsyncSession = Depends(get_db)
):
    """Archive then delete completed items"""
    request_id = getattr(request.state, "request_id", "-")
    count = await ArchivalManager(db, archived_by="api").archive_completed_queue_items(older_than_days)
    logger.info(f"[{request_id}] POST /queue/clear-completed - removed {count} items")
    return OperationResult(count=count, message=f"Archived and removed {count} completed items")


@router.get("/batches/{batch_id}", response_model=BatchProgress)
async def batch_progress(batch_id: str, db: AsyncSession = Depends(get_db)):
    progress = await QueueStore(db).batches.get_progress(batch_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found")
    return progress
