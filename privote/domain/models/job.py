"""Job domain model for the submission and tally queues.

Jobs are owned by the queue once accepted. Workers mutate a job only
while holding its lease.

State Machine:
    WAITING -> ACTIVE (dequeued by a worker)
    DELAYED -> WAITING (delay or retry backoff elapsed)
    ACTIVE -> COMPLETED (handler succeeded)
    ACTIVE -> DELAYED (retryable failure, attempts remaining)
    ACTIVE -> FAILED (terminal failure or attempts exhausted)
    ACTIVE -> WAITING (lease expired, redelivery)

COMPLETED and FAILED are terminal; a job is never resurrected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobKind(Enum):
    """Kind of job, each with its own queue and worker pool."""

    SUBMISSION = "submission"
    TALLY = "tally"


class JobState(Enum):
    """State of a job in the queue."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """Check if the job has finished for good."""
        return self in (JobState.COMPLETED, JobState.FAILED)

    @property
    def public_state(self) -> str:
        """State as reported to status pollers.

        DELAYED is an internal refinement of WAITING.
        """
        if self is JobState.DELAYED:
            return JobState.WAITING.value
        return self.value


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential retry backoff.

    The delay before attempt ``n + 1`` after a failed attempt ``n`` is
    ``base_delay_seconds * 2 ** (n - 1)`` capped at ``max_delay_seconds``.

    Attributes:
        base_delay_seconds: Delay after the first failed attempt.
        max_delay_seconds: Upper bound for any single delay.
    """

    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 300.0

    def __post_init__(self) -> None:
        """Validate backoff bounds."""
        if self.base_delay_seconds < 0:
            raise ValueError(
                f"base_delay_seconds must be non-negative, got {self.base_delay_seconds}"
            )
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if attempt < 1:
            attempt = 1
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)

    def to_dict(self) -> dict[str, float]:
        return {
            "base_delay_seconds": self.base_delay_seconds,
            "max_delay_seconds": self.max_delay_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackoffPolicy:
        return cls(
            base_delay_seconds=float(data["base_delay_seconds"]),
            max_delay_seconds=float(data["max_delay_seconds"]),
        )


@dataclass(frozen=True)
class JobOptions:
    """Per-enqueue overrides. ``None`` fields fall back to the kind defaults.

    Attributes:
        priority: Lower value runs first.
        delay_seconds: Initial delay before the job becomes eligible.
        max_attempts: Attempts before the job fails permanently.
        backoff: Retry backoff policy.
        job_id: Caller-chosen id; enqueueing an existing id is a no-op.
    """

    priority: int | None = None
    delay_seconds: float | None = None
    max_attempts: int | None = None
    backoff: BackoffPolicy | None = None
    job_id: str | None = None


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A unit of work handed to a worker.

    Attributes:
        id: Globally unique, stable job id.
        kind: Which queue/pool the job belongs to.
        payload: Kind-specific payload (vote id or proposal id).
        max_attempts: Attempts allowed before permanent failure.
        backoff: Retry backoff policy.
        priority: Lower runs first.
        state: Current queue state.
        attempt: Number of attempts started so far.
        available_at: Epoch seconds when the job becomes eligible.
        progress: Handler checkpoint carried across attempts.
        result: Handler result for completed jobs.
        error_reason: Last failure reason.
        created_at: Enqueue timestamp (UTC).
        finished_at: Completion/failure timestamp (UTC).
    """

    id: str
    kind: JobKind
    payload: dict[str, Any]
    max_attempts: int
    backoff: BackoffPolicy
    priority: int = 0
    state: JobState = JobState.WAITING
    attempt: int = 0
    available_at: float = 0.0
    progress: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error_reason: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    finished_at: datetime | None = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempt, 0)

    def snapshot(self) -> JobStatusSnapshot:
        """Build the caller-visible status of this job."""
        return JobStatusSnapshot(
            job_id=self.id,
            kind=self.kind,
            state=self.state,
            attempt=self.attempt,
            max_attempts=self.max_attempts,
            payload=dict(self.payload),
            progress=dict(self.progress),
            result=self.result,
            error_reason=self.error_reason,
        )


@dataclass(frozen=True)
class JobStatusSnapshot:
    """Point-in-time view of a job for status polling.

    Attributes:
        job_id: The job id.
        kind: Job kind.
        state: Queue state (see ``JobState.public_state``).
        attempt: Attempts started so far.
        max_attempts: Attempt ceiling.
        payload: Job payload.
        progress: Last handler checkpoint.
        result: Handler result when completed.
        error_reason: Failure reason when failed or retrying.
    """

    job_id: str
    kind: JobKind
    state: JobState
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    progress: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "kind": self.kind.value,
            "status": self.state.public_state,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "data": self.payload,
            "progress": self.progress,
            "result": self.result,
            "error": self.error_reason,
        }


__all__ = [
    "BackoffPolicy",
    "Job",
    "JobKind",
    "JobOptions",
    "JobState",
    "JobStatusSnapshot",
]
