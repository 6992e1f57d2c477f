"""
Custom exceptions for the ingestion pipeline with structured error context.

Every exception carries a message, a context dictionary and (optionally)
the exception that caused it, so failures can be logged and stored on the
queue item without losing detail.

Exception Hierarchy:
    IngestionException (base)
    ├── ExtractionError
    │   └── DiagnosticsAPIError
    │       ├── NetworkError (retryable)
    │       ├── RateLimitError (retryable)
    │       ├── AuthenticationError
    │       └── ResourceNotFoundError
    ├── TransformationError
    │   ├── ValidationError
    │   │   └── SchemaValidationError
    │   │       └── MissingImeiError
    │   └── NormalizationError
    ├── MatchingError
    ├── LoadError
    │   ├── DatabaseError
    │   └── UpsertError
    ├── QueueError
    │   └── InvalidTransitionError
    ├── ArchivalError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionException(Exception):
    """
    Base exception for all ingestion-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (imei, queue item id, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = self.message

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {self.original_exception}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(IngestionException):
    """Base exception for failures fetching data from upstream sources."""
    pass


class DiagnosticsAPIError(ExtractionError):
    """
    Exception raised when a diagnostics provider call fails.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - attempt: Attempt number when the error was raised
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(IngestionException):
    """Base exception for payload transformation failures."""
    pass


class ValidationError(TransformationError):
    """
    Exception raised when an input fails validation.

    Context should include:
        - field_name: Name of the field that failed validation
        - reasons: Per-item rejection reasons (bulk enqueue)
    """
    pass


class NormalizationError(TransformationError):
    """Exception raised when a raw payload cannot be normalized."""
    pass


# ============================================================================
# Matching / Load Errors
# ============================================================================

class MatchingError(IngestionException):
    """Exception raised when SKU matching cannot be performed."""
    pass


class LoadError(IngestionException):
    """Base exception for persistence failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (INSERT, UPDATE, UPSERT)
        - table_name: Name of the table
    """
    pass


class UpsertError(LoadError):
    """Exception raised when an upsert by natural key fails."""
    pass


# ============================================================================
# Queue / Archival Errors
# ============================================================================

class QueueError(IngestionException):
    """Base exception for queue state machine errors."""
    pass


class InvalidTransitionError(QueueError):
    """Raised when a status transition is not permitted from the current state."""
    pass


class ArchivalError(IngestionException):
    """
    Exception raised when archive, restore or permanent delete fails.

    The surrounding transaction is always rolled back before this is raised.
    """
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.retry_delay = retry_delay


class NonRetryableError(IngestionException):
    """
    Mixin for errors that should NOT trigger an immediate retry.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Missing mandatory fields
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Specific Errors
# ============================================================================

class NetworkError(RetryableError, DiagnosticsAPIError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, DiagnosticsAPIError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, DiagnosticsAPIError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, DiagnosticsAPIError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


class SchemaValidationError(NonRetryableError, ValidationError):
    """Schema validation errors that should not be retried."""
    pass


class MissingImeiError(SchemaValidationError):
    """A payload carries no usable IMEI under any of the known keys."""
    pass
