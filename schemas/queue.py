"""
Pydantic schemas for queue requests and responses
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import QueueStatus, BatchStatus


class EnqueueRequest(BaseModel):
    """Bulk submission of raw inspection payloads"""
    # each entry is shape-checked by QueueStore.enqueue
    items: List[Any] = Field(..., min_length=1)
    source: str = Field("bulk-add", min_length=1, max_length=100)
    priority: Optional[int] = None
    max_retries: Optional[int] = Field(None, ge=1)


class RejectedItem(BaseModel):
    index: int
    reason: str


class EnqueueResult(BaseModel):
    batch_id: str
    accepted_count: int
    rejected_count: int
    item_ids: List[int] = Field(default_factory=list)
    rejected: List[RejectedItem] = Field(default_factory=list)


class QueueItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: QueueStatus
    priority: int
    retry_count: int
    max_retries: int
    source: str
    batch_id: Optional[str] = None
    error_message: Optional[str] = None
    raw_payload: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None


class QueueStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    oldest_pending: Optional[datetime] = None


class BatchProgress(BaseModel):
    """Progress of one bulk submission"""
    batch_id: str
    source: str
    status: BatchStatus
    total_items: int
    processed_items: int
    failed_items: int
    is_finished: bool
    progress: float = Field(..., description="Percentage of members in a terminal state")
    status_counts: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime


class OperationResult(BaseModel):
    """Count-returning admin operations (retry, cleanup, archive)"""
    success: bool = True
    count: int
    message: Optional[str] = None
