"""Correlation and job context for log entries.

A correlation id ties together every log line produced for one request
or one job attempt. Worker slots additionally bind the job id, the vote
record id and the proposal id for the duration of a job, so every
handler and adapter log line carries them without passing them around.

Usage:
    # Once per CLI command
    set_correlation_id(generate_correlation_id())

    # In a worker slot
    with job_log_context(job_id=job.id, vote_id=vote_id):
        await handler(job)
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any
from uuid import uuid4

import structlog

# Default is empty string to avoid None type issues
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID4)."""
    return str(uuid4())


def get_correlation_id() -> str:
    """Get the current correlation ID, or "" if none is set."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID in the current context.

    Args:
        correlation_id: The correlation ID to set.
    """
    _correlation_id.set(correlation_id)


@contextmanager
def job_log_context(**fields: Any) -> Iterator[None]:
    """Bind job fields to every log entry emitted inside the block.

    None values are dropped. A correlation id is taken from the
    ``correlation_id`` field when given, otherwise the job id is used.

    Args:
        **fields: Context such as job_id, job_kind, vote_id, proposal_id.
    """
    bound = {key: str(value) for key, value in fields.items() if value is not None}
    correlation = bound.pop("correlation_id", None) or bound.get("job_id", "")
    token = _correlation_id.set(correlation)
    try:
        with structlog.contextvars.bound_contextvars(**bound):
            yield
    finally:
        _correlation_id.reset(token)


def correlation_id_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor to add correlation_id to every log entry.

    Args:
        logger: The logger instance (unused, required by structlog).
        method_name: The logging method name (unused, required by structlog).
        event_dict: The event dictionary to modify.

    Returns:
        The event dictionary with correlation_id added.
    """
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict
