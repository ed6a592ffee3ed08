"""Tagged handler outcomes for the worker pools.

Job handlers never signal retryability by raising. They return a
HandlerOutcome whose kind tells the worker pool what to do with the job,
which keeps the transient/permanent decision an explicit value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeKind(Enum):
    """What the worker pool should do after a handler step."""

    CONTINUE = "continue"  # Advance to the next stage (internal to handlers)
    RETRY = "retry"  # Transient failure; reschedule per backoff
    TERMINAL_FAILURE = "terminal_failure"  # Permanent; do not retry
    SUCCESS = "success"  # Job done


class SubmissionStage(Enum):
    """Stages of the submission job state machine."""

    START = "start"
    BUILDING_INPUT = "building_input"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class HandlerOutcome:
    """Result of running (a stage of) a job handler.

    Attributes:
        kind: Action for the worker pool.
        reason: Failure reason for RETRY / TERMINAL_FAILURE.
        result: Result payload stored on the job for SUCCESS.
        stage: Stage the handler reached.
    """

    kind: OutcomeKind
    reason: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    stage: SubmissionStage | None = None

    @classmethod
    def success(
        cls, result: dict[str, Any] | None = None, stage: SubmissionStage | None = None
    ) -> HandlerOutcome:
        return cls(OutcomeKind.SUCCESS, result=result or {}, stage=stage)

    @classmethod
    def retry(cls, reason: str, stage: SubmissionStage | None = None) -> HandlerOutcome:
        return cls(OutcomeKind.RETRY, reason=reason, stage=stage)

    @classmethod
    def terminal(
        cls, reason: str, stage: SubmissionStage | None = None
    ) -> HandlerOutcome:
        return cls(OutcomeKind.TERMINAL_FAILURE, reason=reason, stage=stage)

    @classmethod
    def proceed(
        cls, stage: SubmissionStage, result: dict[str, Any] | None = None
    ) -> HandlerOutcome:
        return cls(OutcomeKind.CONTINUE, result=result or {}, stage=stage)


__all__ = ["HandlerOutcome", "OutcomeKind", "SubmissionStage"]
