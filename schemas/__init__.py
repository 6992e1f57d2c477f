"""
Pydantic schemas for data validation and serialization.

Schemas:
    device: Canonical DeviceRecord produced by the normalizer
    queue: Enqueue requests/results, queue items, stats and batch progress
    reporting: Archive stats, data log stats and processing metrics
    api: Health check and error envelopes

Features:
    - Validation at the normalizer boundary (nothing downstream handles raw dicts)
    - ORM conversion via ``from_attributes``
    - OpenAPI schema generation for FastAPI

Usage:
    from schemas import DeviceRecord, EnqueueResult
    from schemas.api import HealthCheckResponse
"""

from schemas.device import DeviceRecord
from schemas.queue import (
    EnqueueRequest,
    EnqueueResult,
    RejectedItem,
    QueueItemResponse,
    QueueStats,
    BatchProgress,
    OperationResult,
)
from schemas.reporting import (
    ArchiveStats,
    ArchivedRecordResponse,
    DataLogStats,
    ProcessingMetrics,
)

__all__ = [
    "DeviceRecord",
    "EnqueueRequest",
    "EnqueueResult",
    "RejectedItem",
    "QueueItemResponse",
    "QueueStats",
    "BatchProgress",
    "OperationResult",
    "ArchiveStats",
    "ArchivedRecordResponse",
    "DataLogStats",
    "ProcessingMetrics",
]
