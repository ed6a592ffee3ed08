"""Job queue errors."""

from __future__ import annotations

from privote.domain.exceptions import PrivoteError


class QueueUnavailableError(PrivoteError):
    """Raised when the queue substrate cannot accept a job.

    The enqueue path rolls back the pending vote record before surfacing
    this error, so the client may simply retry the request.

    Attributes:
        retryable: Always True; the client may retry.
        retry_after_seconds: Suggested client retry delay.
    """

    retryable = True

    def __init__(self, detail: str = "", retry_after_seconds: int = 5) -> None:
        self.detail = detail
        self.retry_after_seconds = retry_after_seconds
        message = "Job queue unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

