"""
Data log and processing metrics endpoints
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime
from api.dependencies import get_db
from schemas.reporting import DataLogStats, ProcessingMetrics
from ingestion.audit import DataLogWriter, STATUS_SUCCESS, STATUS_FAILED
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/metrics", tags=["Metrics"])


class DataLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    queue_id: Optional[int] = None
    imei: Optional[str] = None
    source: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    processed_data: Optional[Dict[str, Any]] = None
    created_at: datetime
    processed_at: datetime


@router.get("/data-log", response_model=DataLogStats)
async def data_log_stats(db: AsyncSession = Depends(get_db)):
    """Counts by status and source, average processing time"""
    return await DataLogWriter(db).stats()


@router.get("/data-log/records", response_model=List[DataLogEntry])
async def data_log_records(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None, pattern=f"^({STATUS_SUCCESS}|{STATUS_FAILED})$"),
    source: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    return await DataLogWriter(db).list_records(limit=limit, offset=offset, status=status, source=source)


@router.get("/processing", response_model=ProcessingMetrics)
async def processing_metrics(
    window_days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db)
):
    """
    Processing performance.

    Includes:
    - Success rate over the window
    - Average, fastest and slowest processing time
    - Per-day breakdown of the last 7 days
    """
    return await DataLogWriter(db).processing_metrics(window_days=window_days)
