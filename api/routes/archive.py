"""
Archive endpoints: archive, restore and permanently delete IMEI data
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from api.dependencies import get_db
from schemas.queue import OperationResult
from schemas.reporting import ArchiveStats, ArchivedRecordResponse
from ingestion.archival import ArchivalManager, REASON_MANUAL
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/archive", tags=["Archive"])


# Static paths are registered before /{imei} so they are not captured by it

@router.get("/stats", response_model=ArchiveStats)
async def archive_stats(db: AsyncSession = Depends(get_db)):
    return await ArchivalManager(db).stats()


@router.get("/records", response_model=List[ArchivedRecordResponse])
async def list_archived(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    table: Optional[str] = Query(None, description="Filter by original table"),
    reason: Optional[str] = Query(None, description="Filter by archive reason"),
    db: AsyncSession = Depends(get_db)
):
    return await ArchivalManager(db).list_archived(limit=limit, offset=offset, table=table, reason=reason)


@router.get("/{imei}", response_model=List[ArchivedRecordResponse])
async def archived_for_imei(imei: str, db: AsyncSession = Depends(get_db)):
    """Archived snapshots for one IMEI, newest first"""
    return await ArchivalManager(db).get_archived_records(imei)


@router.post("/{imei}", response_model=OperationResult)
async def archive_imei(
    imei: str,
    request: Request,
    reason: str = Query(REASON_MANUAL, min_length=1, max_length=100),
    db: AsyncSession = Depends(get_db)
):
    """
    Snapshot and delete every live row for an IMEI.

    Inventory rollups for the affected SKUs are recomputed in the same
    transaction.
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] POST /archive/{imei} - reason={reason}")
    count = await ArchivalManager(db, archived_by="api").archive_imei(imei, reason=reason)
    return OperationResult(count=count, message=f"Archived {count} rows for IMEI {imei}")


@router.post("/{imei}/restore", response_model=OperationResult)
async def restore_imei(imei: str, request: Request, db: AsyncSession = Depends(get_db)):
    """Restore the most recent archive set; 409 if the IMEI has live rows"""
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] POST /archive/{imei}/restore")
    count = await ArchivalManager(db, archived_by="api").restore_imei(imei)
    return OperationResult(count=count, message=f"Restored {count} rows for IMEI {imei}")


@router.delete("/{imei}", response_model=OperationResult)
async def permanently_delete(imei: str, request: Request, db: AsyncSession = Depends(get_db)):
    request_id = getattr(request.state, "request_id", "-")
    logger.warning(f"[{request_id}] DELETE /archive/{imei} - permanent delete")
    count = await ArchivalManager(db, archived_by="api").permanently_delete(imei)
    return OperationResult(count=count, message=f"Permanently deleted {count} archived rows")
