"""
Pydantic schemas for archive, data log and processing metric reports
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class ArchiveStats(BaseModel):
    total_archived: int = 0
    archived_today: int = 0
    archived_this_week: int = 0
    archived_this_month: int = 0
    by_table: Dict[str, int] = Field(default_factory=dict)


class ArchivedRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_table: str
    original_id: int
    imei: Optional[str] = None
    archived_data: Dict[str, Any]
    archived_at: datetime
    archived_by: str
    archive_reason: str


class DataLogStats(BaseModel):
    total_records: int = 0
    successful: int = 0
    failed: int = 0
    avg_processing_time_ms: float = 0.0
    by_source: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)


class DailyPerformance(BaseModel):
    date: str
    total: int
    successful: int
    success_rate: float


class ProcessingMetrics(BaseModel):
    """Processing performance over the trailing 30 days"""
    total_processed: int = 0
    success_rate: float = 0.0
    avg_processing_time_ms: float = 0.0
    fastest_processing_ms: int = 0
    slowest_processing_ms: int = 0
    recent_performance: List[DailyPerformance] = Field(default_factory=list)
