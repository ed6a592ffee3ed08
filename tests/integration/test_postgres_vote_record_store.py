"""Integration tests for the PostgreSQL vote record store and proposals.

These tests verify against a real database:
- one record per (proposal, subject), enforced by the unique constraint
- idempotency tokens resolve to the original record
- PENDING -> CONFIRMED/FAILED transitions are compare-and-set
- vote_count moves with confirmations only
- the tally handle is stored once
"""

import asyncio
from uuid import uuid4

import pytest

from privote.domain.errors import DuplicateVoteError
from privote.domain.models.vote_record import VoteStatus
from privote.infrastructure.adapters.persistence import (
    PostgresProposalRepository,
    PostgresVoteRecordStore,
)

HANDLE = "0x" + "ab" * 32

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


class TestCreateVote:
    """Tests for record creation and uniqueness."""

    async def test_creates_pending_record(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        subject_id = uuid4()

        reservation = await vote_store.create_vote(
            proposal_id, subject_id, HANDLE, "0x01", "token-1"
        )

        assert reservation.is_new
        record = await vote_store.get(reservation.record.id)
        assert record.status is VoteStatus.PENDING
        assert record.subject_id == subject_id
        assert record.proof_ref == "0x01"
        assert record.idempotency_token == "token-1"
        assert record.attempts == 0

    async def test_second_subject_vote_is_duplicate(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        subject_id = uuid4()
        first = await vote_store.create_vote(proposal_id, subject_id, HANDLE, None, None)

        with pytest.raises(DuplicateVoteError) as exc_info:
            await vote_store.create_vote(proposal_id, subject_id, HANDLE, None, None)

        assert exc_info.value.existing_vote_id == first.record.id

    async def test_same_subject_on_other_proposal(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        subject_id = uuid4()
        first = await insert_proposal()
        second = await insert_proposal(ledger_proposal_id=8)

        await vote_store.create_vote(first, subject_id, HANDLE, None, None)
        reservation = await vote_store.create_vote(second, subject_id, HANDLE, None, None)

        assert reservation.is_new

    async def test_token_returns_original(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        subject_id = uuid4()
        first = await vote_store.create_vote(
            proposal_id, subject_id, HANDLE, None, "token-2"
        )

        again = await vote_store.create_vote(
            proposal_id, subject_id, HANDLE, None, "token-2"
        )
        reserved = await vote_store.check_and_reserve("token-2")

        assert not again.is_new
        assert again.record.id == first.record.id
        assert not reserved.is_new
        assert (await vote_store.check_and_reserve("unused")).is_new

    async def test_concurrent_creates_yield_one_record(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        subject_id = uuid4()

        results = await asyncio.gather(
            *(
                vote_store.create_vote(proposal_id, subject_id, HANDLE, None, None)
                for _ in range(8)
            ),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        duplicates = [r for r in results if isinstance(r, DuplicateVoteError)]
        assert len(created) == 1
        assert len(duplicates) == 7
        assert await vote_store.count_by_status(proposal_id, VoteStatus.PENDING) == 1

    async def test_delete_pending(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        subject_id = uuid4()
        reservation = await vote_store.create_vote(
            proposal_id, subject_id, HANDLE, None, "token-3"
        )

        assert await vote_store.delete_pending(reservation.record.id)
        assert await vote_store.find_by_subject(proposal_id, subject_id) is None
        assert await vote_store.get_by_token("token-3") is None
        assert not await vote_store.delete_pending(reservation.record.id)


class TestTransitions:
    """Tests for compare-and-set status transitions."""

    async def test_confirm_increments_vote_count(
        self,
        vote_store: PostgresVoteRecordStore,
        proposal_repository: PostgresProposalRepository,
        insert_proposal,
    ) -> None:
        proposal_id = await insert_proposal()
        reservation = await vote_store.create_vote(
            proposal_id, uuid4(), HANDLE, None, None
        )
        await vote_store.attach_job(reservation.record.id, "vote-1")

        result = await vote_store.transition_to_confirmed(
            reservation.record.id, "0xtx", 42, 2
        )

        assert result.applied
        record = result.record
        assert record.status is VoteStatus.CONFIRMED
        assert record.ledger_tx_ref == "0xtx"
        assert record.ledger_block_ref == 42
        assert record.attempts == 2
        assert record.job_id == "vote-1"
        assert record.confirmed_at is not None
        assert (await proposal_repository.get(proposal_id)).vote_count == 1
        assert [r.id for r in await vote_store.list_confirmed(proposal_id)] == [
            record.id
        ]

    async def test_repeated_confirm_is_no_op(
        self,
        vote_store: PostgresVoteRecordStore,
        proposal_repository: PostgresProposalRepository,
        insert_proposal,
    ) -> None:
        proposal_id = await insert_proposal()
        reservation = await vote_store.create_vote(
            proposal_id, uuid4(), HANDLE, None, None
        )
        await vote_store.transition_to_confirmed(reservation.record.id, "0xtx", 42, 1)

        again = await vote_store.transition_to_confirmed(
            reservation.record.id, "0xother", 43, 2
        )

        assert not again.applied
        assert not again.conflict
        assert again.record.ledger_tx_ref == "0xtx"
        assert (await proposal_repository.get(proposal_id)).vote_count == 1

    async def test_fail_after_confirm_is_conflict(
        self, vote_store: PostgresVoteRecordStore, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()
        reservation = await vote_store.create_vote(
            proposal_id, uuid4(), HANDLE, None, None
        )
        await vote_store.transition_to_confirmed(reservation.record.id, "0xtx", 42, 1)

        result = await vote_store.transition_to_failed(
            reservation.record.id, "already_voted", 2
        )

        assert not result.applied
        assert result.conflict
        assert (await vote_store.get(reservation.record.id)).status is (
            VoteStatus.CONFIRMED
        )

    async def test_failed_record_keeps_reason(
        self,
        vote_store: PostgresVoteRecordStore,
        proposal_repository: PostgresProposalRepository,
        insert_proposal,
    ) -> None:
        proposal_id = await insert_proposal()
        reservation = await vote_store.create_vote(
            proposal_id, uuid4(), HANDLE, None, None
        )

        result = await vote_store.transition_to_failed(
            reservation.record.id, "voting_closed", 1
        )

        assert result.applied
        assert result.record.error_detail == "voting_closed"
        assert result.record.failed_at is not None
        assert await vote_store.count_by_status(proposal_id, VoteStatus.FAILED) == 1
        assert (await proposal_repository.get(proposal_id)).vote_count == 0

    async def test_missing_record(self, vote_store: PostgresVoteRecordStore) -> None:
        result = await vote_store.transition_to_confirmed(uuid4(), "0xtx", 1, 1)

        assert not result.applied
        assert result.record is None


class TestProposalRepository:
    async def test_tally_is_stored_once(
        self, proposal_repository: PostgresProposalRepository, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal(closed=True)

        first = await proposal_repository.record_tally(proposal_id, "0xaaa", "0xtx1")
        second = await proposal_repository.record_tally(proposal_id, "0xbbb", "0xtx2")

        proposal = await proposal_repository.get(proposal_id)
        assert first
        assert not second
        assert proposal.closed
        assert proposal.encrypted_tally == "0xaaa"
        assert proposal.tally_tx_ref == "0xtx1"

    async def test_tally_job_id(
        self, proposal_repository: PostgresProposalRepository, insert_proposal
    ) -> None:
        proposal_id = await insert_proposal()

        await proposal_repository.set_tally_job(proposal_id, "job-1")

        assert (await proposal_repository.get(proposal_id)).tally_job_id == "job-1"

    async def test_unknown_proposal(
        self, proposal_repository: PostgresProposalRepository
    ) -> None:
        assert await proposal_repository.get(uuid4()) is None
