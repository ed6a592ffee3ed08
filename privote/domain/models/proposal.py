"""Proposal state consumed by the pipeline.

Proposals are created and closed by the (excluded) administrative layer.
The pipeline only reads the open/closed flags and voting window, and
writes the confirmed vote counter and the encrypted tally handle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Proposal:
    """Proposal snapshot.

    Attributes:
        id: Proposal id.
        ledger_proposal_id: On-chain proposal id used in contract calls.
        starts_at: Start of the voting window (UTC).
        ends_at: End of the voting window (UTC).
        closed: Set by an operator when voting is closed.
        vote_count: Number of confirmed votes.
        encrypted_tally: Opaque tally handle, once aggregated.
        tally_tx_ref: Aggregation transaction hash.
        tally_job_id: Id of the tally job that was enqueued on close.
    """

    id: UUID
    ledger_proposal_id: int
    starts_at: datetime
    ends_at: datetime
    closed: bool = field(default=False)
    vote_count: int = field(default=0)
    encrypted_tally: str | None = field(default=None)
    tally_tx_ref: str | None = field(default=None)
    tally_job_id: str | None = field(default=None)

    def __post_init__(self) -> None:
        """Validate the voting window."""
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        if self.vote_count < 0:
            raise ValueError(f"vote_count must be non-negative, got {self.vote_count}")

    def is_open(self, now: datetime | None = None) -> bool:
        """Whether the proposal currently accepts votes."""
        current = now or _utc_now()
        return not self.closed and self.starts_at <= current <= self.ends_at

    def has_ended(self, now: datetime | None = None) -> bool:
        return (now or _utc_now()) > self.ends_at

    @property
    def is_tallied(self) -> bool:
        return self.encrypted_tally is not None


__all__ = ["Proposal"]
