"""
Structured Logging Utility for CloudWatch.

This module provides structured JSON logging optimized for CloudWatch Logs Insights.
All logs are formatted as JSON with consistent fields for easy querying and filtering.

Features:
- JSON format for CloudWatch Logs Insights queries
- Correlation IDs (request_id, campaign_id, entity_id) for tracing work across
  API requests and stage workers
- Lambda context integration (function_name, request_id, memory_limit)
- Performance metrics (duration, timing)

Correlation IDs are stored per thread, because every stage worker runs in its
own thread and processes one entity at a time.

Usage:
    from jobpilot.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Message", extra={"extra_fields": {"campaign_id": "123"}})
"""

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

# Determine log level from environment
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL, logging.INFO)

CORRELATION_KEYS = ("request_id", "campaign_id", "entity_id")

# Per-thread context for correlation IDs
_log_context = threading.local()

# Attributes every LogRecord carries; anything else was added via `extra`
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "aws_request_id",
        "function_name",
        "function_version",
        "memory_limit_mb",
        "extra_fields",
    ]
)


def _current_context() -> Dict[str, str]:
    context = getattr(_log_context, "values", None)
    if context is None:
        context = {}
        _log_context.values = context
    return context


class CloudWatchJSONFormatter(logging.Formatter):
    """JSON formatter for CloudWatch Logs Insights.

    Formats log records as JSON with structured fields for easy querying.
    Includes Lambda context, correlation IDs, and custom fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: LogRecord to format.

        Returns:
            JSON string with structured log data.
        """
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        # Lambda context, set by the filter installed in configure_logging
        for attr in (
            "aws_request_id",
            "function_name",
            "function_version",
            "memory_limit_mb",
        ):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        log_data.update(_current_context())

        # Custom fields passed as extra={"extra_fields": {...}}
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        # Plain attributes passed directly through `extra`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
            log_data["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )

        return json.dumps(log_data, default=str)


def configure_logging(context: Optional[Any] = None) -> None:
    """Configure logging with the JSON formatter.

    Args:
        context: Lambda context object (optional). If provided, extracts
            function_name, request_id, and memory_limit for log context.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(LOG_LEVEL)

    # Remove existing handlers to avoid duplicate logs
    root_logger.handlers = []

    handler = logging.StreamHandler()
    handler.setLevel(LOG_LEVEL)
    handler.setFormatter(CloudWatchJSONFormatter())
    root_logger.addHandler(handler)

    if context:

        class LambdaContextFilter(logging.Filter):
            def filter(self, record: logging.LogRecord) -> bool:
                record.function_name = getattr(context, "function_name", None)
                record.function_version = getattr(context, "function_version", None)
                record.aws_request_id = getattr(context, "aws_request_id", None)
                if hasattr(context, "memory_limit_in_mb"):
                    record.memory_limit_mb = context.memory_limit_in_mb
                return True

        handler.addFilter(LambdaContextFilter())


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with structured logging support.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance configured for structured JSON logging.
    """
    return logging.getLogger(name)


def set_correlation_id(
    request_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    entity_id: Optional[str] = None,
) -> None:
    """Set correlation IDs for the current thread.

    Args:
        request_id: Request ID (from API Gateway, Lambda context or a queue message).
        campaign_id: Campaign the current unit of work belongs to.
        entity_id: JobOffer or Application being processed.
    """
    context = _current_context()
    if request_id:
        context["request_id"] = request_id
    if campaign_id:
        context["campaign_id"] = campaign_id
    if entity_id:
        context["entity_id"] = entity_id


def clear_correlation_ids() -> None:
    """Clear correlation IDs for the current thread."""
    _current_context().clear()


@contextmanager
def log_performance(operation: str, **extra_fields):
    """Context manager for logging operation performance.

    Logs start, completion, and duration of an operation.

    Args:
        operation: Operation name (e.g., "render_document", "llm_call").
        **extra_fields: Additional fields to include in log records.

    Yields:
        None

    Example:
        with log_performance("analyze_match", job_offer_id=offer.id):
            analysis = provider.analyze_match(profile, posting)
    """
    start_time = time.time()
    logger = get_logger(__name__)

    logger.info(
        f"Starting {operation}",
        extra={
            "extra_fields": {
                "operation": operation,
                "start_time": start_time,
                **extra_fields,
            }
        },
    )

    try:
        yield
    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Failed {operation}",
            extra={
                "extra_fields": {
                    "operation": operation,
                    "duration_ms": round(duration_ms, 2),
                    "status": "error",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    **extra_fields,
                }
            },
        )
        raise

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"Completed {operation}",
        extra={
            "extra_fields": {
                "operation": operation,
                "duration_ms": round(duration_ms, 2),
                "status": "success",
                **extra_fields,
            }
        },
    )
