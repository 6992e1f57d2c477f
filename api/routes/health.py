"""
Health check endpoint with database and queue status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db
from core.config import settings
from schemas.api import HealthCheckResponse
from ingestion.queue.store import QueueStore
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Queue counts (degraded while failed items exist)
    - Whether the diagnostics provider is configured
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    queue_stats = None
    if db_connected:
        try:
            queue_stats = await QueueStore(db).stats()
        except Exception as e:
            logger.error(f"Failed to fetch queue stats: {str(e)}")

    # Status is derived by the HealthCheckResponse validator
    return HealthCheckResponse(
        database_connected=db_connected,
        queue=queue_stats,
        diagnostics_configured=settings.phonecheck_configured
    )
