"""Structured logging configuration with structlog.

Supports production (JSON) and development (console) output modes.

Log Entry Format:
    {
        "timestamp": "2026-01-01T00:00:00.000000Z",
        "level": "info",
        "event": "vote_confirmed",
        "correlation_id": "job id or request id",
        "job_id": "...",
        "vote_id": "...",
        ...additional context
    }

Usage:
    from privote.infrastructure.observability import configure_structlog

    configure_structlog(environment="production")  # JSON output
    configure_structlog(environment="development")  # Console output

    import structlog
    log = structlog.get_logger()
    log.info("event_name", key="value")
"""

import logging
import os
from typing import TextIO, cast

import structlog
from structlog.typing import Processor

from privote.infrastructure.observability.correlation import correlation_id_processor

# Environment variable for log level (default: INFO)
LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level(level: str | None = None) -> int:
    """Resolve a log level name, falling back to LOG_LEVEL and then INFO."""
    level_name = (level or os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_structlog(
    environment: str = "production",
    level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog for the process.

    Should be called once at startup (worker process or CLI).

    Args:
        environment: 'production' for JSON output, 'development' for console.
        level: Log level name; overrides LOG_LEVEL when given.
        stream: Output stream (stdout when None).
    """
    shared_processors: list[Processor] = [
        # Merge context from contextvars (job context bound by worker slots)
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        cast(Processor, correlation_id_processor),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )
