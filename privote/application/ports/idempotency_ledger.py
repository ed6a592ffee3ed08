"""Idempotency ledger port.

Prevents duplicate vote records and jobs when a client retries a request
with the same idempotency token.

Atomicity:
    A token is reserved in the same atomic step that creates the vote
    record (unique index on the token). ``check_and_reserve`` is the
    read-side fast path; a racing request that passes it still cannot
    create a second record because ``VoteRecordStoreProtocol.create_vote``
    resolves the token conflict to the existing record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from privote.domain.models.vote_record import VoteRecord


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of an idempotency reservation.

    Attributes:
        is_new: True when the caller owns a fresh reservation.
        record: The created record (is_new) or the prior record (not is_new).
            None only for a fresh reservation not yet tied to a record.
    """

    is_new: bool
    record: VoteRecord | None = None

    @classmethod
    def new(cls, record: VoteRecord | None = None) -> ReservationResult:
        return cls(is_new=True, record=record)

    @classmethod
    def existing(cls, record: VoteRecord) -> ReservationResult:
        return cls(is_new=False, record=record)


class IdempotencyLedgerProtocol(Protocol):
    """Protocol for idempotency token lookups."""

    async def check_and_reserve(self, token: str | None) -> ReservationResult:
        """Check whether a token has already produced a vote record.

        Args:
            token: Client idempotency token. None is always new.

        Returns:
            ReservationResult.new() when unseen, otherwise
            ReservationResult.existing(prior_record).
        """
        ...


__all__ = ["IdempotencyLedgerProtocol", "ReservationResult"]
