"""Bootstrap wiring for logging configuration."""

from __future__ import annotations

import os
from typing import TextIO

from privote.infrastructure.observability import (
    configure_structlog as _configure_structlog,
)


def configure_structlog(
    environment: str | None = None,
    level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog; the environment defaults to $ENVIRONMENT."""
    _configure_structlog(
        environment=environment or os.environ.get("ENVIRONMENT", "production"),
        level=level,
        stream=stream,
    )


__all__ = ["configure_structlog"]
