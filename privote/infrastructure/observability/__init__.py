"""Observability infrastructure: structured logging and correlation.

Usage:
    from privote.infrastructure.observability import (
        configure_structlog,
        job_log_context,
    )

    configure_structlog(environment="production")

    with job_log_context(job_id=job.id, vote_id=vote_id):
        ...
"""

from privote.infrastructure.observability.correlation import (
    correlation_id_processor,
    generate_correlation_id,
    get_correlation_id,
    job_log_context,
    set_correlation_id,
)
from privote.infrastructure.observability.logging import configure_structlog

__all__: list[str] = [
    "configure_structlog",
    "correlation_id_processor",
    "generate_correlation_id",
    "get_correlation_id",
    "job_log_context",
    "set_correlation_id",
]
