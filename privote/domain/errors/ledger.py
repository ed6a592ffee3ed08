"""Errors raised at the ledger and relayer boundary.

Every failure crossing the boundary carries an explicit FailureClass.
TRANSIENT failures are retried by the job queue; PERMANENT failures
fail the vote record immediately.
"""

from __future__ import annotations

from enum import Enum

from privote.domain.exceptions import PrivoteError


class FailureClass(Enum):
    """Retryability of an external failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ExternalCallError(PrivoteError):
    """Base for failures of an external collaborator call.

    Attributes:
        failure_class: TRANSIENT or PERMANENT.
        reason: Short machine-readable reason (e.g. "already_voted").
        detail: Raw message from the collaborator.
    """

    def __init__(
        self,
        failure_class: FailureClass,
        reason: str,
        detail: str = "",
    ) -> None:
        self.failure_class = failure_class
        self.reason = reason
        self.detail = detail
        message = f"{reason}: {detail}" if detail else reason
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.failure_class is FailureClass.TRANSIENT


class LedgerSubmissionError(ExternalCallError):
    """A ledger call failed.

    Attributes:
        tx_ref: Transaction hash when the failure happened after send.
    """

    def __init__(
        self,
        failure_class: FailureClass,
        reason: str,
        detail: str = "",
        tx_ref: str | None = None,
    ) -> None:
        self.tx_ref = tx_ref
        super().__init__(failure_class, reason, detail)


class TransientSubmissionError(LedgerSubmissionError):
    """Network, timeout or node-unavailable failure. Retryable."""

    def __init__(self, reason: str, detail: str = "", tx_ref: str | None = None) -> None:
        super().__init__(FailureClass.TRANSIENT, reason, detail, tx_ref)


class PermanentLedgerRejectionError(LedgerSubmissionError):
    """Ledger reverted with a recognized permanent reason. Not retryable."""

    def __init__(self, reason: str, detail: str = "", tx_ref: str | None = None) -> None:
        super().__init__(FailureClass.PERMANENT, reason, detail, tx_ref)


class LedgerNotInitializedError(PrivoteError):
    """Raised when a ledger client is used before initialize()."""

    def __init__(self, client: str = "ledger client") -> None:
        super().__init__(f"{client} not initialized. Call initialize() first.")


class RelayerError(ExternalCallError):
    """The FHE relayer (input registration / public decryption) failed."""
