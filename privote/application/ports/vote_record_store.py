"""Vote record store port.

Durable storage of vote records with the uniqueness and lifecycle
guarantees the pipeline depends on.

Guarantees required of implementations:
- At most one record per (proposal_id, subject_id), enforced atomically.
- At most one record per idempotency token, enforced atomically.
- ``transition_to_confirmed`` / ``transition_to_failed`` are compare-and-set
  operations against PENDING and are idempotent: a repeated or conflicting
  call is a no-op reported through TransitionResult, never an exception.
- A confirmed transition increments the proposal vote counter in the same
  transaction, and only when the transition applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from privote.application.ports.idempotency_ledger import (
    IdempotencyLedgerProtocol,
    ReservationResult,
)
from privote.domain.models.vote_record import VoteRecord, VoteStatus


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a terminal transition attempt.

    Attributes:
        applied: True when this call moved the record out of PENDING.
        record: The record as stored after the call (None if missing).
        conflict: True when the record was already in the *other*
            terminal status.
    """

    applied: bool
    record: VoteRecord | None
    conflict: bool = False


class VoteRecordStoreProtocol(IdempotencyLedgerProtocol, Protocol):
    """Protocol for vote record persistence."""

    async def create_vote(
        self,
        proposal_id: UUID,
        subject_id: UUID,
        ciphertext_ref: str,
        proof_ref: str | None,
        idempotency_token: str | None,
        weight: int = 1,
    ) -> ReservationResult:
        """Create a PENDING vote record, reserving the idempotency token.

        Returns:
            ReservationResult.new(record) for a fresh record, or
            ReservationResult.existing(prior) when the token was already
            reserved by a concurrent or earlier request.

        Raises:
            DuplicateVoteError: A record already exists for
                (proposal_id, subject_id).
        """
        ...

    async def attach_job(self, vote_id: UUID, job_id: str) -> None:
        """Record the submission job id on the vote."""
        ...

    async def get(self, vote_id: UUID) -> VoteRecord | None:
        """Fetch a vote record by id."""
        ...

    async def get_by_token(self, token: str) -> VoteRecord | None:
        """Fetch the vote created with an idempotency token."""
        ...

    async def find_by_subject(
        self, proposal_id: UUID, subject_id: UUID
    ) -> VoteRecord | None:
        """Fetch the vote of a subject on a proposal, if any."""
        ...

    async def list_confirmed(self, proposal_id: UUID) -> list[VoteRecord]:
        """List CONFIRMED records of a proposal, oldest first."""
        ...

    async def count_by_status(self, proposal_id: UUID, status: VoteStatus) -> int:
        """Count records of a proposal in the given status."""
        ...

    async def delete_pending(self, vote_id: UUID) -> bool:
        """Delete a PENDING record (enqueue rollback only).

        Returns:
            True if a pending record was deleted.
        """
        ...

    async def transition_to_confirmed(
        self,
        vote_id: UUID,
        ledger_tx_ref: str,
        ledger_block_ref: int | None,
        attempts: int,
    ) -> TransitionResult:
        """CAS PENDING -> CONFIRMED and increment the proposal counter once."""
        ...

    async def transition_to_failed(
        self,
        vote_id: UUID,
        error_detail: str,
        attempts: int,
    ) -> TransitionResult:
        """CAS PENDING -> FAILED."""
        ...


__all__ = ["TransitionResult", "VoteRecordStoreProtocol"]
