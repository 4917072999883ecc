"""
Structured logging configuration using structlog.

All logs are output as JSON with consistent context fields.
"""
import structlog
import logging
import sys


def configure_logging(level: int = logging.INFO):
    """Configure structlog for JSON output with context."""

    # Configure standard library logging
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

    return structlog.get_logger()


def get_logger(**context):
    """
    Get a logger with additional context bound.

    Usage:
        log = get_logger(webhook_id=webhook.id, delivery_id=delivery.id)
        log.info("message", extra_field=value)
    """
    return structlog.get_logger().bind(**context)
