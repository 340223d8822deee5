"""Logging configuration for the Spigot builder."""

import logging
import sys

import structlog

from spigot_builder.config import Settings, get_settings

# Matches the console timestamps operators are used to: [19/10/2026 14:03:12]
TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the operator console."""
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
            structlog.dev.ConsoleRenderer(colors=settings.is_development),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Also configure standard library logging for third-party packages
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
