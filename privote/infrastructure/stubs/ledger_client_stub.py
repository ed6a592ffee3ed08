"""Deterministic ledger client stub for testing and local runs.

Simulates the voting contract closely enough for the pipeline:
transaction hashes and tally handles are derived from a counter and the
inputs, so repeated runs produce identical results. Failures are scripted
per operation and consumed in order; an empty script means success.

Usage:
    ledger = await LedgerClientStub().initialize()

    # Two timeouts then success
    ledger.script_inclusion(
        TransientSubmissionError("confirmation_timeout"),
        TransientSubmissionError("confirmation_timeout"),
    )

    # Broadcast response lost after the node accepted the transaction
    ledger.script_broadcast(TransientSubmissionError("timeout"), delivered=True)

    # Contract refuses votes for a ledger proposal
    ledger.close_voting(7)
"""

from __future__ import annotations

import hashlib
from collections import deque
from dataclasses import dataclass

import structlog

from privote.application.ports.ledger_client import (
    AggregationReceipt,
    SignedTransactionHook,
    SubmissionReceipt,
)
from privote.domain.errors import (
    LedgerNotInitializedError,
    LedgerSubmissionError,
    PermanentLedgerRejectionError,
    TransientSubmissionError,
)
from privote.domain.services.ciphertext import proof_bytes, to_bytes32

logger = structlog.get_logger()

STUB_SUBMITTER_ADDRESS = "0x" + "11" * 20


@dataclass(frozen=True)
class SentVote:
    """A vote transaction accepted by the stub (for assertions)."""

    ledger_proposal_id: int
    handle: str
    proof: bytes
    tx_ref: str
    submitter_identity: str | None


class LedgerClientStub:
    """Stub implementation of LedgerSubmissionClientProtocol."""

    def __init__(self, start_block: int = 1) -> None:
        self._initialized = False
        self._nonce = 0
        self._block = start_block
        self._signed: dict[str, SentVote] = {}
        self._pending: dict[str, SentVote] = {}
        self._receipts: dict[str, SubmissionReceipt] = {}
        self._closed_proposals: set[int] = set()
        self._send_script: deque[LedgerSubmissionError] = deque()
        self._broadcast_script: deque[tuple[LedgerSubmissionError, bool]] = deque()
        self._inclusion_script: deque[LedgerSubmissionError] = deque()
        self._aggregate_script: deque[LedgerSubmissionError] = deque()
        self.sent: list[SentVote] = []
        self.aggregate_calls: list[tuple[int, list[str]]] = []

    @property
    def submitter_address(self) -> str:
        return STUB_SUBMITTER_ADDRESS

    def script_send(self, *errors: LedgerSubmissionError) -> None:
        """Queue failures for upcoming send_vote calls."""
        self._send_script.extend(errors)

    def script_broadcast(
        self, *errors: LedgerSubmissionError, delivered: bool = False
    ) -> None:
        """Queue failures for upcoming broadcasts of signed transactions.

        With ``delivered`` the node accepted the transaction before the
        error (a lost response).
        """
        self._broadcast_script.extend((error, delivered) for error in errors)

    def script_inclusion(self, *errors: LedgerSubmissionError) -> None:
        """Queue failures for upcoming wait_for_inclusion calls."""
        self._inclusion_script.extend(errors)

    def script_aggregate(self, *errors: LedgerSubmissionError) -> None:
        """Queue failures for upcoming aggregate calls."""
        self._aggregate_script.extend(errors)

    def close_voting(self, ledger_proposal_id: int) -> None:
        """Make the simulated contract revert further votes for a proposal."""
        self._closed_proposals.add(ledger_proposal_id)

    async def initialize(self) -> LedgerClientStub:
        self._initialized = True
        return self

    async def send_vote(
        self,
        ledger_proposal_id: int,
        ciphertext_handle: str,
        proof: str | None,
        submitter_identity: str | None = None,
        on_signed: SignedTransactionHook | None = None,
    ) -> str:
        self._ensure_initialized()
        try:
            handle_bytes = to_bytes32(ciphertext_handle)
            proof_data = proof_bytes(proof)
        except ValueError as e:
            raise PermanentLedgerRejectionError("malformed_handle", str(e)) from e

        if self._send_script:
            raise self._send_script.popleft()
        if ledger_proposal_id in self._closed_proposals:
            raise PermanentLedgerRejectionError(
                "voting_closed", "execution reverted: Voting closed"
            )

        self._nonce += 1
        nonce = self._nonce.to_bytes(8, "big")
        raw_tx = "0x" + (nonce + handle_bytes + proof_data).hex()
        tx_ref = "0x" + hashlib.sha256(nonce + handle_bytes).hexdigest()
        self._signed[raw_tx] = SentVote(
            ledger_proposal_id=ledger_proposal_id,
            handle="0x" + handle_bytes.hex(),
            proof=proof_data,
            tx_ref=tx_ref,
            submitter_identity=submitter_identity,
        )
        if on_signed is not None:
            await on_signed(tx_ref, raw_tx)
        return await self._broadcast(raw_tx)

    async def broadcast_raw(self, raw_tx: str) -> str:
        self._ensure_initialized()
        if raw_tx not in self._signed:
            raise PermanentLedgerRejectionError(
                "unrecognized_revert", "invalid raw transaction"
            )
        return await self._broadcast(raw_tx)

    async def _broadcast(self, raw_tx: str) -> str:
        vote = self._signed[raw_tx]
        if vote.tx_ref in self._pending or vote.tx_ref in self._receipts:
            raise TransientSubmissionError("nonce_conflict", "already known")
        if self._broadcast_script:
            error, delivered = self._broadcast_script.popleft()
            if delivered:
                self._accept(vote)
            raise error
        self._accept(vote)
        return vote.tx_ref

    def _accept(self, vote: SentVote) -> None:
        self._pending[vote.tx_ref] = vote
        self.sent.append(vote)
        logger.debug(
            "stub_vote_sent",
            tx_ref=vote.tx_ref,
            ledger_proposal_id=vote.ledger_proposal_id,
        )

    async def wait_for_inclusion(
        self, tx_ref: str, timeout: float | None = None
    ) -> SubmissionReceipt:
        self._ensure_initialized()
        if self._inclusion_script:
            error = self._inclusion_script.popleft()
            if error.tx_ref is None:
                error.tx_ref = tx_ref
            raise error

        receipt = self._receipts.get(tx_ref)
        if receipt is None and tx_ref not in self._pending and any(
            vote.tx_ref == tx_ref for vote in self._signed.values()
        ):
            # signed but never reached the node
            raise TransientSubmissionError(
                "confirmation_timeout", "transaction not found", tx_ref=tx_ref
            )
        if receipt is None:
            self._block += 1
            receipt = SubmissionReceipt(tx_ref=tx_ref, block_ref=self._block)
            self._receipts[tx_ref] = receipt
            self._pending.pop(tx_ref, None)
        return receipt

    async def submit(
        self,
        ledger_proposal_id: int,
        ciphertext_handle: str,
        proof: str | None,
        submitter_identity: str | None = None,
    ) -> SubmissionReceipt:
        tx_ref = await self.send_vote(
            ledger_proposal_id, ciphertext_handle, proof, submitter_identity
        )
        return await self.wait_for_inclusion(tx_ref)

    async def aggregate(
        self, ledger_proposal_id: int, handles: list[str]
    ) -> AggregationReceipt:
        self._ensure_initialized()
        self.aggregate_calls.append((ledger_proposal_id, list(handles)))
        if self._aggregate_script:
            raise self._aggregate_script.popleft()

        digest = hashlib.sha256()
        digest.update(ledger_proposal_id.to_bytes(32, "big"))
        for handle in handles:
            digest.update(handle.encode())
        self._nonce += 1
        tx_ref = "0x" + hashlib.sha256(
            b"tally" + self._nonce.to_bytes(8, "big")
        ).hexdigest()
        return AggregationReceipt(
            tally_handle="0x" + digest.hexdigest(),
            tx_ref=tx_ref,
            vote_count=len(handles),
        )

    async def close(self) -> None:
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise LedgerNotInitializedError("LedgerClientStub")
