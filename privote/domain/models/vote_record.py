"""Vote record domain model.

A VoteRecord represents one attempt by a subject to cast an encrypted vote
on a proposal. The ciphertext is opaque to the pipeline; only its ledger
lifecycle is tracked here.

State Machine:
    PENDING -> CONFIRMED (ledger included the vote transaction)
    PENDING -> FAILED (permanent rejection or retries exhausted)

Terminal States:
    CONFIRMED and FAILED are terminal. A record never leaves a terminal
    state and is never deleted once a job has been enqueued for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID


class VoteStatus(Enum):
    """Lifecycle status of a vote record."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """Check if this status is terminal.

        Returns:
            True for CONFIRMED and FAILED.
        """
        return self in TERMINAL_STATUSES

    def valid_transitions(self) -> frozenset[VoteStatus]:
        """Get valid transitions from this status.

        Returns:
            Frozenset of statuses reachable from this one.
            Empty for terminal statuses.
        """
        return STATUS_TRANSITION_MATRIX.get(self, frozenset())


TERMINAL_STATUSES: frozenset[VoteStatus] = frozenset(
    {VoteStatus.CONFIRMED, VoteStatus.FAILED}
)

STATUS_TRANSITION_MATRIX: dict[VoteStatus, frozenset[VoteStatus]] = {
    VoteStatus.PENDING: frozenset({VoteStatus.CONFIRMED, VoteStatus.FAILED}),
    VoteStatus.CONFIRMED: frozenset(),
    VoteStatus.FAILED: frozenset(),
}


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True, eq=True)
class VoteRecord:
    """One vote attempt and its ledger lifecycle.

    Attributes:
        id: Unique identifier of the record.
        proposal_id: Proposal being voted on.
        subject_id: Subject (voter) casting the vote.
        ciphertext_ref: Client-supplied ciphertext handle(s), opaque.
        proof_ref: Optional input proof accompanying the ciphertext.
        weight: Vote weight (>= 0).
        status: Current lifecycle status.
        idempotency_token: Client-supplied retry token (unique when set).
        job_id: Submission job id, attached right after enqueue.
        ledger_tx_ref: Ledger transaction hash once submitted.
        ledger_block_ref: Block number of inclusion once confirmed.
        error_detail: Failure reason for FAILED records.
        attempts: Submission attempts consumed when the record went terminal.
        created_at: Creation timestamp (UTC).
        confirmed_at: Confirmation timestamp (UTC).
        failed_at: Failure timestamp (UTC).
    """

    id: UUID
    proposal_id: UUID
    subject_id: UUID
    ciphertext_ref: str
    proof_ref: str | None = field(default=None)
    weight: int = field(default=1)
    status: VoteStatus = field(default=VoteStatus.PENDING)
    idempotency_token: str | None = field(default=None)
    job_id: str | None = field(default=None)
    ledger_tx_ref: str | None = field(default=None)
    ledger_block_ref: int | None = field(default=None)
    error_detail: str | None = field(default=None)
    attempts: int = field(default=0)
    created_at: datetime = field(default_factory=_utc_now)
    confirmed_at: datetime | None = field(default=None)
    failed_at: datetime | None = field(default=None)

    def __post_init__(self) -> None:
        """Validate vote record fields."""
        if self.weight < 0:
            raise ValueError(f"weight must be non-negative, got {self.weight}")
        if not self.ciphertext_ref:
            raise ValueError("ciphertext_ref must not be empty")

    @property
    def is_terminal(self) -> bool:
        """Whether the record has reached a terminal status."""
        return self.status.is_terminal()

    def confirmed(
        self,
        ledger_tx_ref: str,
        ledger_block_ref: int | None,
        attempts: int,
        at: datetime | None = None,
    ) -> VoteRecord:
        """Return a copy transitioned to CONFIRMED.

        Raises:
            ValueError: If the record is not PENDING.
        """
        self._check_transition(VoteStatus.CONFIRMED)
        return replace(
            self,
            status=VoteStatus.CONFIRMED,
            ledger_tx_ref=ledger_tx_ref,
            ledger_block_ref=ledger_block_ref,
            attempts=attempts,
            confirmed_at=at or _utc_now(),
        )

    def failed(
        self,
        error_detail: str,
        attempts: int,
        at: datetime | None = None,
    ) -> VoteRecord:
        """Return a copy transitioned to FAILED.

        Raises:
            ValueError: If the record is not PENDING.
        """
        self._check_transition(VoteStatus.FAILED)
        return replace(
            self,
            status=VoteStatus.FAILED,
            error_detail=error_detail,
            attempts=attempts,
            failed_at=at or _utc_now(),
        )

    def with_job(self, job_id: str) -> VoteRecord:
        """Return a copy with the submission job id attached."""
        return replace(self, job_id=job_id)

    def _check_transition(self, new_status: VoteStatus) -> None:
        if new_status not in self.status.valid_transitions():
            raise ValueError(
                f"Invalid vote status transition {self.status.value} -> "
                f"{new_status.value} for vote {self.id}"
            )


__all__ = [
    "STATUS_TRANSITION_MATRIX",
    "TERMINAL_STATUSES",
    "VoteRecord",
    "VoteStatus",
]
