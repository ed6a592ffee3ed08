"""Proposal repository port.

Proposals are owned by the administrative layer; the pipeline reads
their open/closed state and writes the tally outcome.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from privote.domain.models.proposal import Proposal


class ProposalRepositoryProtocol(Protocol):
    """Protocol for the proposal state consumed by the pipeline."""

    async def get(self, proposal_id: UUID) -> Proposal | None:
        """Fetch a proposal snapshot."""
        ...

    async def set_tally_job(self, proposal_id: UUID, job_id: str) -> None:
        """Remember the tally job enqueued for a proposal."""
        ...

    async def record_tally(
        self,
        proposal_id: UUID,
        encrypted_tally: str,
        tally_tx_ref: str | None,
    ) -> bool:
        """Persist the tally handle if none is stored yet (CAS).

        Returns:
            True if this call stored the handle, False if a handle was
            already present (the existing one is kept).
        """
        ...


__all__ = ["ProposalRepositoryProtocol"]
