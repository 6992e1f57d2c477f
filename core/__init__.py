"""
Core utilities and configuration for the IMEI ingestion service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session management and dialect helpers
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import QueueError, ArchivalError
    from core.logging import setup_logging

Example:
    setup_logging()

    async with async_session_maker() as session:
        stats = await QueueStore(session).stats()
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "IngestionException",
    "ExtractionError",
    "DiagnosticsAPIError",
    "TransformationError",
    "ValidationError",
    "NormalizationError",
    "SchemaValidationError",
    "MissingImeiError",
    "MatchingError",
    "LoadError",
    "DatabaseError",
    "UpsertError",
    "QueueError",
    "InvalidTransitionError",
    "ArchivalError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
]
