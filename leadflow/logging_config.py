"""
Structured logging configuration using structlog.

All logs are output as JSON with consistent context fields. Request-scoped
fields (correlation_id) are merged in from structlog contextvars.
"""
import structlog
import logging
import sys

from leadflow.config import settings


def configure_logging():
    """Configure structlog for JSON output with context."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    
    # Configure standard library logging (uvicorn, sqlalchemy, arq)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    
    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    
    return structlog.get_logger(app=settings.APP_NAME)


# Create logger instance
logger = configure_logging()


def get_logger(**context):
    """
    Get a logger with additional context bound.
    
    Usage:
        log = get_logger(component="dispatcher")
        log.info("automation_event_sent", event_id=event.id)
    """
    return logger.bind(**context)
