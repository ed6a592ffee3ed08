"""Vote submission service.

Accepts a client-prepared encrypted vote and hands it to the async
pipeline:

1. Idempotency fast path: a known token returns the prior record (and
   re-issues its job while the record is still PENDING)
2. Eligibility: proposal exists and is open, ciphertext reference is usable
3. Atomic create of the PENDING record (token reserved in the same step)
4. Enqueue the submission job
5. Attach the job id to the record

If the queue rejects the job, the pending record is deleted before the
error is surfaced, so a client retry starts clean and no record is left
without a job. The vote counter is never touched here; it only moves
when the ledger confirms the vote.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from privote.application.ports.job_queue import JobQueueProtocol
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.ports.vote_record_store import VoteRecordStoreProtocol
from privote.application.services.base import LoggingMixin
from privote.domain.errors import (
    MalformedCiphertextError,
    ProposalNotFoundError,
    ProposalNotOpenError,
    QueueUnavailableError,
    VoteRecordNotFoundError,
)
from privote.domain.models.job import JobKind, JobOptions, JobStatusSnapshot
from privote.domain.models.vote_record import VoteRecord, VoteStatus
from privote.domain.services.ciphertext import is_opaque_ciphertext, parse_handles


def submission_job_id(vote_id: UUID) -> str:
    """Stable submission job id for a vote record."""
    return f"vote-{vote_id}"


@dataclass(frozen=True)
class SubmissionTicket:
    """What the caller gets back from enqueue_submission.

    Attributes:
        vote_record_id: The vote record id.
        job_id: Submission job id to poll.
        is_duplicate: True when an earlier request with the same
            idempotency token already created the record.
        status: Current status of the record.
    """

    vote_record_id: UUID
    job_id: str
    is_duplicate: bool
    status: VoteStatus

    @classmethod
    def for_record(cls, record: VoteRecord, is_duplicate: bool) -> SubmissionTicket:
        return cls(
            vote_record_id=record.id,
            job_id=record.job_id or submission_job_id(record.id),
            is_duplicate=is_duplicate,
            status=record.status,
        )


class VoteSubmissionService(LoggingMixin):
    """Entry point used by the (external) HTTP layer to submit votes.

    Attributes:
        _store: Vote record store (also the idempotency ledger).
        _proposals: Proposal repository for eligibility checks.
        _queue: Job queue.
    """

    def __init__(
        self,
        store: VoteRecordStoreProtocol,
        proposals: ProposalRepositoryProtocol,
        queue: JobQueueProtocol,
    ) -> None:
        self._store = store
        self._proposals = proposals
        self._queue = queue
        self._init_logger(component="submission")

    async def enqueue_submission(
        self,
        proposal_id: UUID,
        subject_id: UUID,
        ciphertext_ref: str,
        proof_ref: str | None = None,
        idempotency_token: str | None = None,
        now: datetime | None = None,
    ) -> SubmissionTicket:
        """Record a vote and enqueue its submission job.

        Args:
            proposal_id: Proposal being voted on.
            subject_id: Authenticated subject casting the vote.
            ciphertext_ref: Client ciphertext handle(s) or opaque ciphertext.
            proof_ref: Optional input proof.
            idempotency_token: Optional client retry token.
            now: Evaluation time for the voting window (defaults to now).

        Returns:
            SubmissionTicket for the new or pre-existing record.

        Raises:
            ProposalNotFoundError: Unknown proposal.
            ProposalNotOpenError: Proposal closed or outside its window.
            MalformedCiphertextError: Unusable ciphertext reference.
            DuplicateVoteError: Subject already voted on this proposal.
            QueueUnavailableError: Job could not be enqueued (retryable).
        """
        log = self._log_operation(
            "enqueue_submission",
            proposal_id=str(proposal_id),
            has_token=idempotency_token is not None,
        )

        reservation = await self._store.check_and_reserve(idempotency_token)
        if not reservation.is_new and reservation.record is not None:
            log.info("submission_duplicate_token", vote_id=str(reservation.record.id))
            return await self._resume(reservation.record, log)

        proposal = await self._proposals.get(proposal_id)
        if proposal is None:
            log.warning("submission_rejected", reason="proposal_not_found")
            raise ProposalNotFoundError(proposal_id)
        if not proposal.is_open(now):
            log.warning("submission_rejected", reason="proposal_not_open")
            raise ProposalNotOpenError(proposal_id)
        self._check_ciphertext(proposal_id, ciphertext_ref)

        reservation = await self._store.create_vote(
            proposal_id=proposal_id,
            subject_id=subject_id,
            ciphertext_ref=ciphertext_ref,
            proof_ref=proof_ref,
            idempotency_token=idempotency_token,
        )
        record = reservation.record
        assert record is not None
        if not reservation.is_new:
            log.info("submission_duplicate_token", vote_id=str(record.id), race=True)
            return await self._resume(record, log)

        try:
            job_id = await self._enqueue_job(record)
        except QueueUnavailableError:
            deleted = await self._store.delete_pending(record.id)
            log.error(
                "submission_enqueue_failed",
                vote_id=str(record.id),
                rolled_back=deleted,
            )
            raise

        await self._store.attach_job(record.id, job_id)
        log.info("submission_enqueued", vote_id=str(record.id), job_id=job_id)
        return SubmissionTicket(
            vote_record_id=record.id,
            job_id=job_id,
            is_duplicate=False,
            status=VoteStatus.PENDING,
        )

    async def _enqueue_job(self, record: VoteRecord) -> str:
        return await self._queue.enqueue(
            JobKind.SUBMISSION,
            {"vote_id": str(record.id), "proposal_id": str(record.proposal_id)},
            JobOptions(job_id=submission_job_id(record.id)),
        )

    async def _resume(
        self, record: VoteRecord, log: structlog.BoundLogger
    ) -> SubmissionTicket:
        """Answer a token retry, re-issuing the job of a still pending record.

        The earlier request may have died between creating the record and
        enqueueing its job. The job id is deterministic, so this enqueue is
        a no-op when the job already exists.
        """
        if record.status is not VoteStatus.PENDING:
            return SubmissionTicket.for_record(record, is_duplicate=True)
        job_id = await self._enqueue_job(record)
        if record.job_id is None:
            await self._store.attach_job(record.id, job_id)
            log.warning("submission_job_reissued", vote_id=str(record.id), job_id=job_id)
        return SubmissionTicket(
            vote_record_id=record.id,
            job_id=job_id,
            is_duplicate=True,
            status=VoteStatus.PENDING,
        )

    async def get_job_status(self, job_id: str) -> JobStatusSnapshot | None:
        """Status of a submission or tally job, None if unknown or expired."""
        return await self._queue.get_status(job_id)

    async def get_vote_status(self, vote_id: UUID) -> VoteRecord:
        """Fetch a vote record.

        Raises:
            VoteRecordNotFoundError: Unknown vote id.
        """
        record = await self._store.get(vote_id)
        if record is None:
            raise VoteRecordNotFoundError(vote_id)
        return record

    async def has_subject_voted(self, proposal_id: UUID, subject_id: UUID) -> bool:
        """Whether the subject has a vote record (in any status) on the proposal."""
        return await self._store.find_by_subject(proposal_id, subject_id) is not None

    @staticmethod
    def _check_ciphertext(proposal_id: UUID, ciphertext_ref: str) -> None:
        if not ciphertext_ref or not ciphertext_ref.strip():
            raise MalformedCiphertextError(proposal_id, "empty ciphertext reference")
        handles = parse_handles(ciphertext_ref)
        if handles is None and not is_opaque_ciphertext(ciphertext_ref):
            raise MalformedCiphertextError(proposal_id, "invalid handle encoding")
        if handles is not None and len(handles) != 1:
            raise MalformedCiphertextError(proposal_id, "expected exactly one handle")
