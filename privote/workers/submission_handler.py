"""Submission job handler.

Drives one vote through its ledger lifecycle:

    START -> BUILDING_INPUT -> SUBMITTING -> AWAITING_CONFIRMATION
          -> CONFIRMED | REVERTED | TIMED_OUT

Each stage returns a HandlerOutcome. CONTINUE advances to the next
stage; RETRY leaves the vote PENDING and lets the queue reschedule the
job; TERMINAL_FAILURE fails the vote immediately.

Redelivery safety:
- A vote already in a terminal status ends the job with no side effects:
  a confirmed vote completes it, a failed vote fails it.
- The signed transaction (hash and raw bytes) is checkpointed in the job
  progress before broadcast. A later attempt re-sends that same
  transaction and waits on its hash instead of signing a second vote.
- Whenever the queue fails the job for good (terminal outcome, retries
  used up, or the last lease expired) on_failed moves a still pending
  vote to FAILED.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from uuid import UUID

import structlog

from privote.application.ports.fhe_relayer import FheRelayerProtocol
from privote.application.ports.job_queue import JobQueueProtocol
from privote.application.ports.ledger_client import LedgerSubmissionClientProtocol
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.ports.vote_record_store import VoteRecordStoreProtocol
from privote.domain.errors import ExternalCallError, LedgerSubmissionError
from privote.domain.models.job import Job, JobKind
from privote.domain.models.outcome import HandlerOutcome, OutcomeKind, SubmissionStage
from privote.domain.models.proposal import Proposal
from privote.domain.models.vote_record import VoteRecord, VoteStatus
from privote.domain.services.ciphertext import is_opaque_ciphertext, parse_handles
from privote.infrastructure.monitoring.metrics import PipelineMetrics

logger = structlog.get_logger()


@dataclass
class _SubmissionAttempt:
    """Mutable state of one attempt as it moves through the stages."""

    job: Job
    record: VoteRecord
    proposal: Proposal
    handle: str | None = None
    proof: str | None = None
    tx_ref: str | None = None


class SubmissionHandler:
    """Handler for submission jobs.

    Args:
        store: Vote record store.
        proposals: Proposal repository (on-chain proposal id lookup).
        ledger: Ledger submission client.
        queue: Job queue, used to checkpoint the transaction hash.
        relayer: FHE relayer for opaque client ciphertexts. Without one,
            only handle references can be submitted.
        contract_address: Voting contract the relayer registers inputs for.
        confirmation_timeout_seconds: Inclusion wait per attempt.
        relayer_timeout_seconds: Deadline for relayer registration.
        metrics: Optional metrics sink.
    """

    kind = JobKind.SUBMISSION

    def __init__(
        self,
        store: VoteRecordStoreProtocol,
        proposals: ProposalRepositoryProtocol,
        ledger: LedgerSubmissionClientProtocol,
        queue: JobQueueProtocol,
        relayer: FheRelayerProtocol | None = None,
        contract_address: str = "",
        confirmation_timeout_seconds: float = 120.0,
        relayer_timeout_seconds: float = 30.0,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._store = store
        self._proposals = proposals
        self._ledger = ledger
        self._queue = queue
        self._relayer = relayer
        self._contract_address = contract_address
        self._confirmation_timeout = confirmation_timeout_seconds
        self._relayer_timeout = relayer_timeout_seconds
        self._metrics = metrics

    async def __call__(self, job: Job) -> HandlerOutcome:
        """Run one attempt of a submission job."""
        try:
            vote_id = UUID(str(job.payload["vote_id"]))
        except (KeyError, ValueError):
            logger.error("vote_job_invalid_payload", payload=job.payload)
            return HandlerOutcome.terminal("invalid_payload", SubmissionStage.START)

        record = await self._store.get(vote_id)
        if record is None:
            logger.error("vote_job_record_missing", vote_id=str(vote_id))
            return HandlerOutcome.terminal("vote_not_found", SubmissionStage.START)

        if record.is_terminal:
            logger.info("vote_job_redelivered", status=record.status.value)
            return self._already_done(record)

        proposal = await self._proposals.get(record.proposal_id)
        if proposal is None:
            return await self._reject(
                job, record, "proposal_not_found", SubmissionStage.START
            )

        attempt = _SubmissionAttempt(job=job, record=record, proposal=proposal)
        stage = SubmissionStage.BUILDING_INPUT
        checkpoint = job.progress.get("tx_ref")
        if checkpoint:
            attempt.tx_ref = str(checkpoint)
            if job.progress.get("stage") == SubmissionStage.SUBMITTING.value:
                stage = SubmissionStage.SUBMITTING
            else:
                stage = SubmissionStage.AWAITING_CONFIRMATION
            logger.info(
                "vote_job_resuming",
                tx_ref=attempt.tx_ref,
                stage=stage.value,
                attempt=job.attempt,
            )

        stages = {
            SubmissionStage.BUILDING_INPUT: self._build_input,
            SubmissionStage.SUBMITTING: (
                self._rebroadcast if attempt.tx_ref else self._submit
            ),
            SubmissionStage.AWAITING_CONFIRMATION: self._await_confirmation,
        }
        while True:
            outcome = await stages[stage](attempt)
            if outcome.kind is not OutcomeKind.CONTINUE:
                return outcome
            assert outcome.stage is not None
            stage = outcome.stage

    async def on_failed(self, job: Job, reason: str, exhausted: bool = False) -> None:
        """Fail the vote once the queue has failed its job for good.

        Args:
            job: The failed job.
            reason: Last failure reason recorded on the job.
            exhausted: True when the attempts ran out (retries or lease
                expiry) rather than on a terminal outcome.
        """
        try:
            vote_id = UUID(str(job.payload["vote_id"]))
        except (KeyError, ValueError):
            return
        detail = f"retries_exhausted: {reason}" if exhausted else reason
        result = await self._store.transition_to_failed(vote_id, detail, job.attempt)
        if result.conflict:
            # already confirmed or failed by the attempt that ran
            logger.debug("vote_transition_conflict", target="failed")
        elif result.applied:
            logger.warning(
                "vote_failed_by_queue",
                reason=reason,
                exhausted=exhausted,
                attempts=job.attempt,
            )

    async def _build_input(self, attempt: _SubmissionAttempt) -> HandlerOutcome:
        stage = SubmissionStage.BUILDING_INPUT
        record = attempt.record
        handles = parse_handles(record.ciphertext_ref)
        proof = record.proof_ref

        if handles is None:
            if not is_opaque_ciphertext(record.ciphertext_ref) or self._relayer is None:
                return await self._reject(
                    attempt.job, attempt.record, "malformed_ciphertext", stage
                )
            try:
                encrypted = await asyncio.wait_for(
                    self._relayer.register_input(
                        record.ciphertext_ref,
                        record.proof_ref,
                        self._contract_address,
                        self._ledger.submitter_address,
                    ),
                    timeout=self._relayer_timeout,
                )
            except asyncio.TimeoutError:
                return self._retry("relayer_timeout", stage)
            except ExternalCallError as e:
                if e.is_transient:
                    return self._retry(e.reason, stage)
                return await self._reject(
                    attempt.job, attempt.record, e.reason, stage
                )
            handles = encrypted.handles
            proof = encrypted.input_proof

        if len(handles) != 1:
            return await self._reject(
                attempt.job, attempt.record, "malformed_ciphertext", stage
            )

        attempt.handle = handles[0]
        attempt.proof = proof
        logger.debug("vote_input_built", handle_prefix=attempt.handle[:10])
        return HandlerOutcome.proceed(SubmissionStage.SUBMITTING)

    async def _submit(self, attempt: _SubmissionAttempt) -> HandlerOutcome:
        stage = SubmissionStage.SUBMITTING
        assert attempt.handle is not None

        async def checkpoint(tx_ref: str, raw_tx: str) -> None:
            await self._queue.save_progress(
                attempt.job,
                {"stage": stage.value, "tx_ref": tx_ref, "raw_tx": raw_tx},
            )
            attempt.tx_ref = tx_ref

        try:
            tx_ref = await self._ledger.send_vote(
                attempt.proposal.ledger_proposal_id,
                attempt.handle,
                attempt.proof,
                submitter_identity=str(attempt.record.subject_id),
                on_signed=checkpoint,
            )
        except LedgerSubmissionError as e:
            if attempt.tx_ref is not None and e.is_transient:
                # the node may hold the transaction; the next attempt re-sends it
                logger.warning(
                    "vote_tx_broadcast_uncertain",
                    tx_ref=attempt.tx_ref,
                    reason=e.reason,
                )
            return await self._ledger_failure(attempt, e, stage)

        attempt.tx_ref = tx_ref
        await self._queue.save_progress(
            attempt.job,
            {"stage": SubmissionStage.AWAITING_CONFIRMATION.value, "tx_ref": tx_ref},
        )
        logger.info("vote_tx_sent", tx_ref=tx_ref)
        return HandlerOutcome.proceed(SubmissionStage.AWAITING_CONFIRMATION)

    async def _rebroadcast(self, attempt: _SubmissionAttempt) -> HandlerOutcome:
        """Re-send the transaction an earlier attempt signed.

        The node answers nonce_conflict when it already holds or mined the
        transaction, which is as good as a successful send.
        """
        stage = SubmissionStage.SUBMITTING
        raw_tx = attempt.job.progress.get("raw_tx")
        if raw_tx:
            try:
                await self._ledger.broadcast_raw(str(raw_tx))
            except LedgerSubmissionError as e:
                if e.reason != "nonce_conflict":
                    return await self._ledger_failure(attempt, e, stage)
                logger.info("vote_tx_already_known", tx_ref=attempt.tx_ref)
        await self._queue.save_progress(
            attempt.job, {"stage": SubmissionStage.AWAITING_CONFIRMATION.value}
        )
        return HandlerOutcome.proceed(SubmissionStage.AWAITING_CONFIRMATION)

    async def _await_confirmation(self, attempt: _SubmissionAttempt) -> HandlerOutcome:
        stage = SubmissionStage.AWAITING_CONFIRMATION
        assert attempt.tx_ref is not None
        try:
            receipt = await self._ledger.wait_for_inclusion(
                attempt.tx_ref, timeout=self._confirmation_timeout
            )
        except LedgerSubmissionError as e:
            if e.is_transient and e.reason == "confirmation_timeout":
                stage = SubmissionStage.TIMED_OUT
            return await self._ledger_failure(attempt, e, stage)

        result = await self._store.transition_to_confirmed(
            attempt.record.id, receipt.tx_ref, receipt.block_ref, attempt.job.attempt
        )
        if result.conflict:
            logger.warning(
                "vote_transition_conflict",
                target="confirmed",
                current=result.record.status.value if result.record else None,
            )
        else:
            logger.info(
                "vote_confirmed",
                tx_ref=receipt.tx_ref,
                block_ref=receipt.block_ref,
                applied=result.applied,
            )
        return HandlerOutcome.success(
            {
                "outcome": "confirmed",
                "vote_id": str(attempt.record.id),
                "tx_ref": receipt.tx_ref,
                "block_ref": receipt.block_ref,
            },
            SubmissionStage.CONFIRMED,
        )

    async def _ledger_failure(
        self,
        attempt: _SubmissionAttempt,
        error: LedgerSubmissionError,
        stage: SubmissionStage,
    ) -> HandlerOutcome:
        if self._metrics is not None:
            self._metrics.record_ledger_failure(error.failure_class.value, error.reason)
        if error.is_transient:
            return self._retry(error.reason, stage)
        logger.warning(
            "ledger_revert",
            reason=error.reason,
            detail=error.detail,
            tx_ref=error.tx_ref,
        )
        return await self._reject(
            attempt.job, attempt.record, error.reason, SubmissionStage.REVERTED
        )

    def _retry(self, reason: str, stage: SubmissionStage) -> HandlerOutcome:
        logger.warning("vote_submission_retry", reason=reason, stage=stage.value)
        return HandlerOutcome.retry(reason, stage)

    async def _reject(
        self,
        job: Job,
        record: VoteRecord,
        reason: str,
        stage: SubmissionStage,
    ) -> HandlerOutcome:
        result = await self._store.transition_to_failed(record.id, reason, job.attempt)
        if result.conflict and result.record is not None:
            logger.warning("vote_transition_conflict", target="failed")
            return self._already_done(result.record)
        logger.warning("vote_rejected", reason=reason, stage=stage.value)
        return HandlerOutcome.terminal(reason, stage)

    def _already_done(self, record: VoteRecord) -> HandlerOutcome:
        if record.status is VoteStatus.FAILED:
            return HandlerOutcome.terminal(
                record.error_detail or "already_failed", SubmissionStage.REVERTED
            )
        return HandlerOutcome.success(
            {
                "outcome": "already_confirmed",
                "vote_id": str(record.id),
                "tx_ref": record.ledger_tx_ref,
                "block_ref": record.ledger_block_ref,
            },
            SubmissionStage.CONFIRMED,
        )
