"""Category-specific error handling for pipeline workers.

Job handlers return tagged outcomes for every failure they anticipate.
Anything that still escapes a handler (or a handler deadline) lands here
and is turned into an explicit decision:

- RETRY: Transient errors that may succeed on a later attempt
- FAIL: Permanent errors; retrying cannot help
- SKIP: Idempotent duplicates that are safe to treat as done

Errors with an explicit FailureClass (ledger and relayer errors) are
classified by that class. Unknown errors retry, so an unexpected failure
costs an attempt instead of silently failing a vote.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from privote.domain.errors import (
    DuplicateVoteError,
    ExternalCallError,
    MalformedCiphertextError,
    QueueUnavailableError,
    TallyPreconditionUnmetError,
    ValidationRejectionError,
    VoteRecordNotFoundError,
)
from privote.domain.models.outcome import HandlerOutcome, SubmissionStage

logger = structlog.get_logger()


class ErrorCategory(Enum):
    """Categories of errors encountered while running jobs."""

    # Transient - may succeed on retry
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    QUEUE_UNAVAILABLE = "queue_unavailable"
    EXTERNAL_TRANSIENT = "external_transient"

    # Permanent - the job cannot succeed
    EXTERNAL_REJECTED = "external_rejected"
    INVALID_PAYLOAD = "invalid_payload"
    MALFORMED_CIPHERTEXT = "malformed_ciphertext"
    PRECONDITION_UNMET = "precondition_unmet"

    # Idempotent - safe to skip
    DUPLICATE = "duplicate"

    # Unknown - requires investigation
    UNKNOWN = "unknown"


class ErrorAction(Enum):
    """Action to take when an error occurs."""

    RETRY = "retry"  # Reschedule per the job's backoff
    FAIL = "fail"  # Terminal failure, no retry
    SKIP = "skip"  # Treat as already done


@dataclass(frozen=True)
class ErrorDecision:
    """Decision about how to handle an error.

    Attributes:
        action: The action to take
        category: The error category
        reason: Short machine-readable reason recorded on the job
        log_level: Level used when logging the error
    """

    action: ErrorAction
    category: ErrorCategory
    reason: str
    log_level: str = "warning"

    @property
    def is_terminal(self) -> bool:
        """Check if this decision ends processing for this job."""
        return self.action in {ErrorAction.FAIL, ErrorAction.SKIP}


# Error type to category mapping
ERROR_CATEGORIES: dict[type[Exception], ErrorCategory] = {}


def register_error_category(
    error_type: type[Exception],
    category: ErrorCategory,
) -> None:
    """Register an error type with its category.

    Args:
        error_type: The exception type
        category: The category to assign
    """
    ERROR_CATEGORIES[error_type] = category


def categorize_error(error: BaseException) -> ErrorCategory:
    """Determine the category of an error.

    Args:
        error: The exception to categorize

    Returns:
        ErrorCategory for the error
    """
    if isinstance(error, ExternalCallError):
        if error.is_transient:
            return ErrorCategory.EXTERNAL_TRANSIENT
        return ErrorCategory.EXTERNAL_REJECTED

    # Most specific registered type wins (subclasses register after bases)
    for error_type, category in reversed(list(ERROR_CATEGORIES.items())):
        if isinstance(error, error_type):
            return category

    error_name = type(error).__name__.lower()
    error_msg = str(error).lower()

    if "timeout" in error_name or "timed out" in error_msg or "timeout" in error_msg:
        return ErrorCategory.TIMEOUT

    if (
        "ratelimit" in error_name
        or "rate limit" in error_msg
        or "http 429" in error_msg
        or "http 503" in error_msg
        or "temporarily unavailable" in error_msg
    ):
        return ErrorCategory.RATE_LIMIT

    if any(p in error_name for p in ["connection", "network", "socket"]):
        return ErrorCategory.NETWORK

    return ErrorCategory.UNKNOWN


def _reason_for(error: BaseException, category: ErrorCategory) -> str:
    if isinstance(error, ExternalCallError):
        return error.reason
    if isinstance(error, ValidationRejectionError):
        return error.reason
    if isinstance(error, TallyPreconditionUnmetError):
        return error.reason
    return category.value


class ErrorHandler:
    """Error handler that decides actions based on error category.

    - Transient errors -> RETRY (the queue enforces max attempts)
    - Permanent errors -> FAIL
    - Duplicates -> SKIP
    - Unknown errors -> RETRY, logged at error level for investigation

    Usage:
        handler = ErrorHandler()

        try:
            outcome = await job_handler(job)
        except Exception as e:
            outcome = handler.to_outcome(e)
    """

    RETRYABLE_CATEGORIES: set[ErrorCategory] = {
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.NETWORK,
        ErrorCategory.QUEUE_UNAVAILABLE,
        ErrorCategory.EXTERNAL_TRANSIENT,
    }

    TERMINAL_CATEGORIES: set[ErrorCategory] = {
        ErrorCategory.EXTERNAL_REJECTED,
        ErrorCategory.INVALID_PAYLOAD,
        ErrorCategory.MALFORMED_CIPHERTEXT,
        ErrorCategory.PRECONDITION_UNMET,
    }

    SKIP_CATEGORIES: set[ErrorCategory] = {
        ErrorCategory.DUPLICATE,
    }

    def handle(self, error: BaseException) -> ErrorDecision:
        """Handle an error and decide the action.

        Args:
            error: The exception that occurred

        Returns:
            ErrorDecision with action and reason
        """
        category = categorize_error(error)
        reason = _reason_for(error, category)

        if category in self.SKIP_CATEGORIES:
            logger.debug("job_error_skipped", error=str(error), category=category.value)
            return ErrorDecision(ErrorAction.SKIP, category, reason, log_level="debug")

        if category in self.TERMINAL_CATEGORIES:
            logger.warning(
                "job_error_permanent",
                error=str(error),
                category=category.value,
                reason=reason,
            )
            return ErrorDecision(ErrorAction.FAIL, category, reason)

        if category in self.RETRYABLE_CATEGORIES:
            logger.warning(
                "job_error_transient",
                error=str(error),
                category=category.value,
                reason=reason,
            )
            return ErrorDecision(ErrorAction.RETRY, category, reason)

        logger.error(
            "job_error_unknown",
            error=str(error),
            error_type=type(error).__name__,
        )
        return ErrorDecision(ErrorAction.RETRY, category, reason, log_level="error")

    def to_outcome(
        self, error: BaseException, stage: SubmissionStage | None = None
    ) -> HandlerOutcome:
        """Translate an escaped error into a handler outcome."""
        decision = self.handle(error)
        if decision.action is ErrorAction.RETRY:
            return HandlerOutcome.retry(decision.reason, stage)
        if decision.action is ErrorAction.SKIP:
            return HandlerOutcome.success({"outcome": "skipped"}, stage)
        return HandlerOutcome.terminal(decision.reason, stage)


# Register pipeline error types
register_error_category(QueueUnavailableError, ErrorCategory.QUEUE_UNAVAILABLE)
register_error_category(ValidationRejectionError, ErrorCategory.INVALID_PAYLOAD)
register_error_category(MalformedCiphertextError, ErrorCategory.MALFORMED_CIPHERTEXT)
register_error_category(VoteRecordNotFoundError, ErrorCategory.INVALID_PAYLOAD)
register_error_category(TallyPreconditionUnmetError, ErrorCategory.PRECONDITION_UNMET)
register_error_category(DuplicateVoteError, ErrorCategory.DUPLICATE)

# Register standard library exceptions
register_error_category(ConnectionError, ErrorCategory.NETWORK)
register_error_category(TimeoutError, ErrorCategory.TIMEOUT)
register_error_category(asyncio.TimeoutError, ErrorCategory.TIMEOUT)
