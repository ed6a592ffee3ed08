"""Tally job handler.

Preconditions are checked when the job runs, not when it was enqueued:
the proposal must exist and be closed. An unmet precondition fails this
job instance for good; an operator re-triggers the tally.

Outcomes:
- already_tallied: a handle is stored; nothing is recomputed
- no_votes: zero confirmed votes; no ledger call is made
- tallied: the ledger aggregated the confirmed votes and the handle
  was persisted (or a racing job persisted one first)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog

from privote.application.ports.ledger_client import LedgerSubmissionClientProtocol
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.ports.vote_record_store import VoteRecordStoreProtocol
from privote.domain.errors import LedgerSubmissionError, TallyPreconditionUnmetError
from privote.domain.models.job import Job, JobKind
from privote.domain.models.outcome import HandlerOutcome
from privote.domain.models.vote_record import VoteRecord
from privote.domain.services.ciphertext import parse_handles
from privote.infrastructure.monitoring.metrics import PipelineMetrics

logger = structlog.get_logger()


def _handle_of(record: VoteRecord) -> str:
    handles = parse_handles(record.ciphertext_ref)
    return handles[0] if handles else record.ciphertext_ref


class TallyHandler:
    """Handler for tally jobs."""

    kind = JobKind.TALLY

    def __init__(
        self,
        store: VoteRecordStoreProtocol,
        proposals: ProposalRepositoryProtocol,
        ledger: LedgerSubmissionClientProtocol,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._store = store
        self._proposals = proposals
        self._ledger = ledger
        self._metrics = metrics

    async def __call__(self, job: Job) -> HandlerOutcome:
        """Run one attempt of a tally job."""
        try:
            proposal_id = UUID(str(job.payload["proposal_id"]))
        except (KeyError, ValueError):
            logger.error("tally_job_invalid_payload", payload=job.payload)
            return HandlerOutcome.terminal("invalid_payload")

        proposal = await self._proposals.get(proposal_id)
        if proposal is None:
            return self._precondition_unmet(proposal_id, "proposal_not_found")
        if not proposal.closed:
            return self._precondition_unmet(proposal_id, "proposal_not_closed")

        if proposal.is_tallied:
            logger.info("tally_already_computed")
            return HandlerOutcome.success(
                self._result(
                    "already_tallied", proposal.encrypted_tally, proposal.vote_count
                )
            )

        confirmed = await self._store.list_confirmed(proposal_id)
        if not confirmed:
            logger.warning("tally_no_votes")
            return HandlerOutcome.success(self._result("no_votes", None, 0))

        try:
            receipt = await self._ledger.aggregate(
                proposal.ledger_proposal_id, [_handle_of(r) for r in confirmed]
            )
        except LedgerSubmissionError as e:
            if self._metrics is not None:
                self._metrics.record_ledger_failure(e.failure_class.value, e.reason)
            logger.warning(
                "tally_aggregation_failed",
                reason=e.reason,
                transient=e.is_transient,
            )
            if e.is_transient:
                return HandlerOutcome.retry(e.reason)
            return HandlerOutcome.terminal(e.reason)

        stored = await self._proposals.record_tally(
            proposal_id, receipt.tally_handle, receipt.tx_ref
        )
        if not stored:
            # A racing job persisted first; report the handle that won.
            current = await self._proposals.get(proposal_id)
            handle = current.encrypted_tally if current else None
            logger.info("tally_already_computed", race=True)
            return HandlerOutcome.success(
                self._result("already_tallied", handle, len(confirmed))
            )

        logger.info(
            "tally_computed",
            vote_count=len(confirmed),
            tx_ref=receipt.tx_ref,
        )
        result = self._result("tallied", receipt.tally_handle, len(confirmed))
        result["tx_ref"] = receipt.tx_ref
        return HandlerOutcome.success(result)

    def _precondition_unmet(self, proposal_id: UUID, reason: str) -> HandlerOutcome:
        error = TallyPreconditionUnmetError(proposal_id, reason)
        logger.warning("tally_precondition_unmet", reason=reason, error=str(error))
        return HandlerOutcome.terminal(error.reason)

    @staticmethod
    def _result(
        outcome: str, encrypted_tally: str | None, vote_count: int
    ) -> dict[str, Any]:
        return {
            "outcome": outcome,
            "encrypted_tally": encrypted_tally,
            "vote_count": vote_count,
        }
