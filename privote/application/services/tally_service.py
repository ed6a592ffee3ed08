"""Tally trigger and tally read-side service.

Enqueueing a tally is an operator action taken when a proposal closes.
Preconditions (closed proposal, no tally yet) are checked by the tally
handler when the job runs, after the settle delay lets trailing
submissions land.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from privote.application.ports.fhe_relayer import FheRelayerProtocol
from privote.application.ports.job_queue import JobQueueProtocol
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.services.base import LoggingMixin
from privote.domain.errors import (
    FailureClass,
    ProposalNotFoundError,
    RelayerError,
    TallyNotReadyError,
)
from privote.domain.models.job import JobKind
from privote.domain.models.proposal import Proposal


@dataclass(frozen=True)
class EncryptedTally:
    """Encrypted tally of a proposal, for client-side decryption.

    Attributes:
        proposal_id: The proposal.
        encrypted_tally: Opaque tally handle.
        vote_count: Confirmed votes.
        closed: Whether the proposal is closed.
        ends_at: End of the voting window.
    """

    proposal_id: UUID
    encrypted_tally: str
    vote_count: int
    closed: bool
    ends_at: datetime


@dataclass(frozen=True)
class PublicTally:
    """Publicly decrypted tally."""

    proposal_id: UUID
    clear_value: int
    decryption_proof: str | None
    vote_count: int


class TallyService(LoggingMixin):
    """Service for triggering and reading tallies."""

    def __init__(
        self,
        proposals: ProposalRepositoryProtocol,
        queue: JobQueueProtocol,
        relayer: FheRelayerProtocol | None = None,
    ) -> None:
        self._proposals = proposals
        self._queue = queue
        self._relayer = relayer
        self._init_logger(component="tally")

    async def enqueue_tally(self, proposal_id: UUID) -> str:
        """Enqueue a tally job for a proposal.

        A tally job that is still waiting or running is reused instead of
        enqueueing a second one.

        Returns:
            The tally job id.

        Raises:
            ProposalNotFoundError: Unknown proposal.
            QueueUnavailableError: Job could not be enqueued.
        """
        log = self._log_operation("enqueue_tally", proposal_id=str(proposal_id))
        proposal = await self._require(proposal_id)

        if proposal.tally_job_id is not None:
            status = await self._queue.get_status(proposal.tally_job_id)
            if status is not None and not status.state.is_terminal():
                log.info("tally_job_reused", job_id=proposal.tally_job_id)
                return proposal.tally_job_id

        if not proposal.closed:
            log.warning("tally_enqueued_before_close")

        job_id = await self._queue.enqueue(
            JobKind.TALLY, {"proposal_id": str(proposal_id)}
        )
        await self._proposals.set_tally_job(proposal_id, job_id)
        log.info("tally_enqueued", job_id=job_id)
        return job_id

    async def get_encrypted_tally(
        self, proposal_id: UUID, now: datetime | None = None
    ) -> EncryptedTally:
        """Read the encrypted tally.

        Raises:
            ProposalNotFoundError: Unknown proposal.
            TallyNotReadyError: No tally computed yet; ``awaiting_close`` is
                set when voting ended but the proposal is not closed.
        """
        proposal = await self._require(proposal_id)
        if proposal.encrypted_tally is None:
            awaiting_close = proposal.has_ended(now) and not proposal.closed
            raise TallyNotReadyError(proposal_id, awaiting_close=awaiting_close)
        return EncryptedTally(
            proposal_id=proposal.id,
            encrypted_tally=proposal.encrypted_tally,
            vote_count=proposal.vote_count,
            closed=proposal.closed,
            ends_at=proposal.ends_at,
        )

    async def decrypt_tally_public(self, proposal_id: UUID) -> PublicTally:
        """Publicly decrypt the tally through the relayer.

        Raises:
            ProposalNotFoundError: Unknown proposal.
            TallyNotReadyError: No tally computed yet.
            RelayerError: Relayer missing or failed.
        """
        log = self._log_operation("decrypt_tally_public", proposal_id=str(proposal_id))
        proposal = await self._require(proposal_id)
        if proposal.encrypted_tally is None:
            raise TallyNotReadyError(proposal_id)
        if self._relayer is None:
            raise RelayerError(FailureClass.PERMANENT, "relayer_not_configured")

        result = await self._relayer.public_decrypt(proposal.encrypted_tally)
        log.info("tally_decrypted", vote_count=proposal.vote_count)
        return PublicTally(
            proposal_id=proposal.id,
            clear_value=result.clear_value,
            decryption_proof=result.decryption_proof,
            vote_count=proposal.vote_count,
        )

    async def _require(self, proposal_id: UUID) -> Proposal:
        proposal = await self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal
