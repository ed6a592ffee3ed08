"""Job queue port.

Durable, prioritized, at-least-once job delivery with per-job retry and
exponential backoff.

Delivery semantics:
    A job may be delivered more than once (lease expiry after a worker
    crash or hang). Handlers must be idempotent with respect to their side
    effects. Lease expiry counts against max_attempts: an expired lease on
    the last attempt fails the job.

Ordering:
    Among eligible jobs of one kind, lower priority values run first, then
    FIFO by eligibility time. Jobs whose delay or backoff has not elapsed
    are not eligible.
"""

from __future__ import annotations

from typing import Any, Protocol

from privote.domain.models.job import (
    Job,
    JobKind,
    JobOptions,
    JobState,
    JobStatusSnapshot,
)


class JobQueueProtocol(Protocol):
    """Protocol for the job queue substrate."""

    async def enqueue(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        """Add a job.

        Args:
            kind: Queue to add to.
            payload: Kind-specific payload.
            options: Overrides of the kind defaults.

        Returns:
            The job id. If ``options.job_id`` names an existing job, that
            id is returned and nothing is added.

        Raises:
            QueueUnavailableError: The substrate cannot accept jobs.
        """
        ...

    async def dequeue(self, kind: JobKind, timeout: float = 1.0) -> Job | None:
        """Lease the next eligible job of a kind.

        Blocks up to ``timeout`` seconds. The returned job is ACTIVE with
        its attempt counter already incremented.

        Returns:
            The leased job, or None if nothing became eligible in time.
        """
        ...

    async def save_progress(self, job: Job, progress: dict[str, Any]) -> None:
        """Merge a handler checkpoint into an active job.

        The checkpoint survives retries and redelivery, so a later attempt
        can resume instead of repeating a side effect.
        """
        ...

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> None:
        """Mark an active job COMPLETED."""
        ...

    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        """Record a failed attempt.

        Retryable failures with attempts remaining are rescheduled after
        the job's backoff delay (DELAYED). Otherwise the job is FAILED.

        Returns:
            The resulting state (DELAYED or FAILED).
        """
        ...

    async def lease_failures(self, kind: JobKind, limit: int = 100) -> list[Job]:
        """Jobs the queue failed because their final lease expired.

        A lease that expires on the last allowed attempt moves the job to
        FAILED with error_reason "lease_expired" instead of redelivering
        it. Such jobs are listed here until acknowledged, so the worker
        side can still run its failure handling.
        """
        ...

    async def ack_lease_failure(self, job: Job) -> None:
        """Drop a job from lease_failures() once it has been handled."""
        ...

    async def get_status(self, job_id: str) -> JobStatusSnapshot | None:
        """Status snapshot, or None if unknown or garbage-collected."""
        ...

    async def stats(self) -> dict[str, dict[str, int]]:
        """Job counts per kind and state."""
        ...

    async def close(self) -> None:
        """Release substrate connections."""
        ...


__all__ = ["JobQueueProtocol"]
