"""In-memory proposal repository stub for testing.

Holds proposals created by tests (the administrative layer is out of
scope) and applies the tally CAS exactly as the PostgreSQL adapter does.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from privote.domain.models.proposal import Proposal


class ProposalRepositoryStub:
    """Stub implementation of ProposalRepositoryProtocol.

    Usage:
        proposals = ProposalRepositoryStub()
        proposals.add(proposal)
        proposals.close(proposal.id)
    """

    def __init__(self) -> None:
        self._proposals: dict[UUID, Proposal] = {}
        self._record_tally_calls: int = 0

    def add(self, proposal: Proposal) -> None:
        """Seed a proposal (test helper)."""
        self._proposals[proposal.id] = proposal

    def close(self, proposal_id: UUID) -> None:
        """Mark a proposal closed (operator action, test helper)."""
        self._proposals[proposal_id] = replace(self._proposals[proposal_id], closed=True)

    def increment_vote_count(self, proposal_id: UUID) -> None:
        """Increment the confirmed-vote counter.

        Called by VoteRecordStoreStub inside its confirm transition, never
        by services.
        """
        proposal = self._proposals.get(proposal_id)
        if proposal is not None:
            self._proposals[proposal_id] = replace(
                proposal, vote_count=proposal.vote_count + 1
            )

    @property
    def record_tally_calls(self) -> int:
        return self._record_tally_calls

    def clear(self) -> None:
        """Clear all state for test isolation."""
        self._proposals.clear()
        self._record_tally_calls = 0

    async def get(self, proposal_id: UUID) -> Proposal | None:
        return self._proposals.get(proposal_id)

    async def set_tally_job(self, proposal_id: UUID, job_id: str) -> None:
        proposal = self._proposals.get(proposal_id)
        if proposal is not None:
            self._proposals[proposal_id] = replace(proposal, tally_job_id=job_id)

    async def record_tally(
        self,
        proposal_id: UUID,
        encrypted_tally: str,
        tally_tx_ref: str | None,
    ) -> bool:
        """Store the tally handle only if none is stored yet."""
        self._record_tally_calls += 1
        proposal = self._proposals.get(proposal_id)
        if proposal is None or proposal.encrypted_tally is not None:
            return False
        self._proposals[proposal_id] = replace(
            proposal, encrypted_tally=encrypted_tally, tally_tx_ref=tally_tx_ref
        )
        return True
