import logging
import time
import uuid
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from schemas.api import ErrorResponse
from core.exceptions import (
    IngestionException,
    ValidationError,
    QueueError,
    ArchivalError,
    ResourceNotFoundError,
)

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id
    - api_latency_ms
    """

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()

        request.state.request_id = request_id

        response: Response = await call_next(request)

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        return response


def status_for(exc: IngestionException) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ResourceNotFoundError):
        return 404
    if isinstance(exc, (QueueError, ArchivalError)):
        return 409
    return 500


async def ingestion_exception_handler(request: Request, exc: IngestionException) -> JSONResponse:
    """Translate domain exceptions into the ErrorResponse envelope"""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"Unhandled ingestion error: {exc}", extra={"error_context": exc.to_dict()})
    body = ErrorResponse(
        error=type(exc).__name__,
        detail=exc.message,
        context=jsonable_encoder(exc.context),
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
