"""In-memory vote record store stub for testing.

Mirrors the guarantees of the PostgreSQL store:
- unique (proposal_id, subject_id) and unique idempotency token
- compare-and-set terminal transitions
- confirm and counter increment applied together

Every check-then-write below runs without an await in between, so it is
atomic with respect to other coroutines on the same event loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from uuid import UUID, uuid4

from privote.application.ports.idempotency_ledger import ReservationResult
from privote.application.ports.vote_record_store import TransitionResult
from privote.domain.errors import DuplicateVoteError
from privote.domain.models.vote_record import VoteRecord, VoteStatus
from privote.infrastructure.stubs.proposal_repository_stub import (
    ProposalRepositoryStub,
)


class VoteRecordStoreStub:
    """Stub implementation of VoteRecordStoreProtocol.

    Usage:
        proposals = ProposalRepositoryStub()
        store = VoteRecordStoreStub(proposals)

        result = await store.create_vote(proposal_id, subject_id, "0xab", None, "tok-1")
        await store.transition_to_confirmed(result.record.id, "0xtx", 12, attempts=1)

        # Simulate a write failure
        store.fail_next_create = RuntimeError("db down")
    """

    def __init__(self, proposals: ProposalRepositoryStub | None = None) -> None:
        self._proposals = proposals or ProposalRepositoryStub()
        self._records: dict[UUID, VoteRecord] = {}
        self._by_subject: dict[tuple[UUID, UUID], UUID] = {}
        self._by_token: dict[str, UUID] = {}
        self.fail_next_create: Exception | None = None
        self.conflicts_logged: int = 0

    @property
    def proposals(self) -> ProposalRepositoryStub:
        return self._proposals

    @property
    def records(self) -> list[VoteRecord]:
        """All stored records (for test assertions)."""
        return list(self._records.values())

    def clear(self) -> None:
        """Clear all state for test isolation."""
        self._records.clear()
        self._by_subject.clear()
        self._by_token.clear()
        self.fail_next_create = None
        self.conflicts_logged = 0

    async def check_and_reserve(self, token: str | None) -> ReservationResult:
        if token is None:
            return ReservationResult.new()
        existing = await self.get_by_token(token)
        if existing is None:
            return ReservationResult.new()
        return ReservationResult.existing(existing)

    async def create_vote(
        self,
        proposal_id: UUID,
        subject_id: UUID,
        ciphertext_ref: str,
        proof_ref: str | None,
        idempotency_token: str | None,
        weight: int = 1,
    ) -> ReservationResult:
        # Yield once so concurrent callers interleave before the atomic section.
        await asyncio.sleep(0)

        if self.fail_next_create is not None:
            error, self.fail_next_create = self.fail_next_create, None
            raise error

        if idempotency_token is not None and idempotency_token in self._by_token:
            return ReservationResult.existing(
                self._records[self._by_token[idempotency_token]]
            )

        existing_id = self._by_subject.get((proposal_id, subject_id))
        if existing_id is not None:
            raise DuplicateVoteError(proposal_id, subject_id, existing_id)

        record = VoteRecord(
            id=uuid4(),
            proposal_id=proposal_id,
            subject_id=subject_id,
            ciphertext_ref=ciphertext_ref,
            proof_ref=proof_ref,
            weight=weight,
            idempotency_token=idempotency_token,
        )
        self._records[record.id] = record
        self._by_subject[(proposal_id, subject_id)] = record.id
        if idempotency_token is not None:
            self._by_token[idempotency_token] = record.id
        return ReservationResult.new(record)

    async def attach_job(self, vote_id: UUID, job_id: str) -> None:
        record = self._records.get(vote_id)
        if record is not None:
            self._records[vote_id] = record.with_job(job_id)

    async def get(self, vote_id: UUID) -> VoteRecord | None:
        return self._records.get(vote_id)

    async def get_by_token(self, token: str) -> VoteRecord | None:
        vote_id = self._by_token.get(token)
        return self._records.get(vote_id) if vote_id is not None else None

    async def find_by_subject(
        self, proposal_id: UUID, subject_id: UUID
    ) -> VoteRecord | None:
        vote_id = self._by_subject.get((proposal_id, subject_id))
        return self._records.get(vote_id) if vote_id is not None else None

    async def list_confirmed(self, proposal_id: UUID) -> list[VoteRecord]:
        confirmed = [
            r
            for r in self._records.values()
            if r.proposal_id == proposal_id and r.status is VoteStatus.CONFIRMED
        ]
        return sorted(confirmed, key=lambda r: r.created_at)

    async def count_by_status(self, proposal_id: UUID, status: VoteStatus) -> int:
        return sum(
            1
            for r in self._records.values()
            if r.proposal_id == proposal_id and r.status is status
        )

    async def delete_pending(self, vote_id: UUID) -> bool:
        record = self._records.get(vote_id)
        if record is None or record.status is not VoteStatus.PENDING:
            return False
        del self._records[vote_id]
        del self._by_subject[(record.proposal_id, record.subject_id)]
        if record.idempotency_token is not None:
            self._by_token.pop(record.idempotency_token, None)
        return True

    async def transition_to_confirmed(
        self,
        vote_id: UUID,
        ledger_tx_ref: str,
        ledger_block_ref: int | None,
        attempts: int,
    ) -> TransitionResult:
        record = self._records.get(vote_id)
        if record is None:
            return TransitionResult(applied=False, record=None)
        if record.status is not VoteStatus.PENDING:
            return self._no_op(record, VoteStatus.CONFIRMED)

        updated = record.confirmed(
            ledger_tx_ref, ledger_block_ref, attempts, at=datetime.now(timezone.utc)
        )
        self._records[vote_id] = updated
        self._proposals.increment_vote_count(record.proposal_id)
        return TransitionResult(applied=True, record=updated)

    async def transition_to_failed(
        self,
        vote_id: UUID,
        error_detail: str,
        attempts: int,
    ) -> TransitionResult:
        record = self._records.get(vote_id)
        if record is None:
            return TransitionResult(applied=False, record=None)
        if record.status is not VoteStatus.PENDING:
            return self._no_op(record, VoteStatus.FAILED)

        updated = record.failed(error_detail, attempts, at=datetime.now(timezone.utc))
        self._records[vote_id] = updated
        return TransitionResult(applied=True, record=updated)

    def _no_op(self, record: VoteRecord, target: VoteStatus) -> TransitionResult:
        conflict = record.status is not target
        if conflict:
            self.conflicts_logged += 1
        return TransitionResult(applied=False, record=record, conflict=conflict)
