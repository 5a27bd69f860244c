"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing, a correlation id and user context.
"""
import time
import uuid
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from leadflow.routes.metrics import track_request

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-Id"
MAX_CORRELATION_ID_LENGTH = 128


def resolve_correlation_id(header_value: str | None) -> str:
    """Incoming header value trimmed to 128 chars, or a fresh id."""
    if header_value and header_value.strip():
        return header_value.strip()[:MAX_CORRELATION_ID_LENGTH]
    return uuid.uuid4().hex


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.
    
    Adds: correlation_id, route, method, duration_ms, status to every log.
    The correlation id is bound into structlog contextvars, so service logs
    emitted while handling the request carry it too.
    """
    
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        
        request_logger = logger.bind(
            route=request.url.path,
            method=request.method,
        )
        
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            request_logger.error(
                "request_failed",
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e)
            )
            track_request(request.method, request.url.path, 500, duration_ms / 1000)
            structlog.contextvars.clear_contextvars()
            raise
        
        duration_ms = (time.time() - start_time) * 1000
        
        request_logger.info(
            "request_completed",
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )
        track_request(request.method, request.url.path, response.status_code, duration_ms / 1000)
        structlog.contextvars.clear_contextvars()
        
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
