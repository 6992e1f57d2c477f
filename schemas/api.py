"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, Optional
from datetime import datetime
from models.base import utcnow
from schemas.queue import QueueStats


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    queue: Optional[QueueStats] = None
    diagnostics_configured: bool = False

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.queue is not None and self.queue.failed > 0:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "healthy",
            "timestamp": "2024-01-15T10:30:00Z",
            "database_connected": True,
            "queue": {
                "total": 1200,
                "pending": 40,
                "processing": 2,
                "completed": 1158,
                "failed": 0,
                "oldest_pending": "2024-01-15T10:29:12Z"
            },
            "diagnostics_configured": True
        }
    })


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "ArchivalError",
            "detail": "Live rows already exist for IMEI 356789012345678",
            "timestamp": "2024-01-15T10:30:00Z"
        }
    })
