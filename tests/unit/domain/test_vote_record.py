"""Unit tests for the VoteRecord model and its status state machine."""

from uuid import uuid4

import pytest

from privote.domain.models.vote_record import (
    STATUS_TRANSITION_MATRIX,
    VoteRecord,
    VoteStatus,
)


def _record(**overrides) -> VoteRecord:
    fields = {
        "id": uuid4(),
        "proposal_id": uuid4(),
        "subject_id": uuid4(),
        "ciphertext_ref": "0x" + "ab" * 32,
    }
    fields.update(overrides)
    return VoteRecord(**fields)


class TestVoteStatus:
    """Tests for VoteStatus."""

    def test_terminal_statuses(self) -> None:
        assert VoteStatus.CONFIRMED.is_terminal()
        assert VoteStatus.FAILED.is_terminal()
        assert not VoteStatus.PENDING.is_terminal()

    def test_only_pending_has_transitions(self) -> None:
        assert VoteStatus.PENDING.valid_transitions() == frozenset(
            {VoteStatus.CONFIRMED, VoteStatus.FAILED}
        )
        assert VoteStatus.CONFIRMED.valid_transitions() == frozenset()
        assert VoteStatus.FAILED.valid_transitions() == frozenset()

    def test_matrix_covers_every_status(self) -> None:
        assert set(STATUS_TRANSITION_MATRIX) == set(VoteStatus)


class TestVoteRecord:
    """Tests for VoteRecord construction and transitions."""

    def test_defaults(self) -> None:
        record = _record()

        assert record.status is VoteStatus.PENDING
        assert record.weight == 1
        assert record.attempts == 0
        assert record.job_id is None
        assert not record.is_terminal

    def test_negative_weight_rejected(self) -> None:
        with pytest.raises(ValueError, match="weight"):
            _record(weight=-1)

    def test_empty_ciphertext_rejected(self) -> None:
        with pytest.raises(ValueError, match="ciphertext_ref"):
            _record(ciphertext_ref="")

    def test_confirm_sets_ledger_refs(self) -> None:
        record = _record()

        confirmed = record.confirmed("0xtx", 42, attempts=2)

        assert confirmed.status is VoteStatus.CONFIRMED
        assert confirmed.ledger_tx_ref == "0xtx"
        assert confirmed.ledger_block_ref == 42
        assert confirmed.attempts == 2
        assert confirmed.confirmed_at is not None
        # Original is untouched
        assert record.status is VoteStatus.PENDING

    def test_fail_sets_error_detail(self) -> None:
        failed = _record().failed("already_voted", attempts=1)

        assert failed.status is VoteStatus.FAILED
        assert failed.error_detail == "already_voted"
        assert failed.failed_at is not None

    def test_terminal_record_cannot_transition(self) -> None:
        confirmed = _record().confirmed("0xtx", 1, attempts=1)

        with pytest.raises(ValueError, match="confirmed -> failed"):
            confirmed.failed("late", attempts=2)
        with pytest.raises(ValueError):
            confirmed.confirmed("0xother", 2, attempts=2)

    def test_with_job_attaches_id(self) -> None:
        record = _record().with_job("vote-123")

        assert record.job_id == "vote-123"
        assert record.status is VoteStatus.PENDING
