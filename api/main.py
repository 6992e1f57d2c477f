"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, queue, archive, metrics
from api.middleware import RequestContextMiddleware, ingestion_exception_handler
from core.config import settings
from core.database import async_session_maker
from core.exceptions import IngestionException
from core.logging import setup_logging
from ingestion.extractors.phonecheck import PhonecheckClient
from ingestion.scheduler import HousekeepingScheduler
import logging

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="IMEI Ingestion Service",
    description="Queue-based ingestion and SKU reconciliation for device inspection results",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(IngestionException, ingestion_exception_handler)

# Include routers
app.include_router(health.router)
app.include_router(queue.router)
app.include_router(archive.router)
app.include_router(metrics.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    setup_logging()
    logger.info("Starting IMEI Ingestion Service")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    app.state.client = PhonecheckClient() if settings.phonecheck_configured else None
    app.state.scheduler = None
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = HousekeepingScheduler(async_session_maker, client=app.state.client)
        app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down IMEI Ingestion Service")
    if getattr(app.state, "scheduler", None) is not None:
        app.state.scheduler.stop()
    if getattr(app.state, "client", None) is not None:
        await app.state.client.close()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "IMEI Ingestion Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "queue": "/queue/items",
            "queue_stats": "/queue/stats",
            "archive": "/archive/stats",
            "metrics": "/metrics/processing"
        }
    }
