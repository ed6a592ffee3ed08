"""Ledger submission client port.

Wraps the voting contract: vote submission, inclusion waits and
ledger-side homomorphic aggregation. Implementations must classify every
failure as transient or permanent (LedgerSubmissionError.failure_class).

Variants (chosen at construction, never patched at runtime):
- EvmLedgerClient: JSON-RPC to the host chain, signed by the project key
- LedgerClientStub: deterministic in-memory double for tests and local runs
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

# Awaited with (tx_ref, raw_tx) once a transaction is signed, before broadcast
SignedTransactionHook = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True)
class SubmissionReceipt:
    """Confirmed inclusion of a transaction.

    Attributes:
        tx_ref: Transaction hash.
        block_ref: Block number of inclusion.
    """

    tx_ref: str
    block_ref: int | None


@dataclass(frozen=True)
class AggregationReceipt:
    """Result of ledger-side homomorphic summation.

    Attributes:
        tally_handle: Opaque encrypted tally handle.
        tx_ref: Aggregation transaction hash.
        vote_count: Number of handles aggregated.
    """

    tally_handle: str
    tx_ref: str | None
    vote_count: int


class LedgerSubmissionClientProtocol(Protocol):
    """Protocol for the ledger collaborator."""

    @property
    def submitter_address(self) -> str:
        """Address of the shared submitting identity."""
        ...

    async def initialize(self) -> LedgerSubmissionClientProtocol:
        """Prepare connections; returns the ready client."""
        ...

    async def send_vote(
        self,
        ledger_proposal_id: int,
        ciphertext_handle: str,
        proof: str | None,
        submitter_identity: str | None = None,
        on_signed: SignedTransactionHook | None = None,
    ) -> str:
        """Sign and broadcast a vote transaction.

        Args:
            ledger_proposal_id: On-chain proposal id.
            ciphertext_handle: Handle to encode as bytes32.
            proof: Input proof hex; None or "0x" means empty.
            submitter_identity: Subject reference for audit logs. Signing
                always uses the shared project identity.
            on_signed: Called with the hash and raw bytes of the signed
                transaction before it is broadcast. If it raises, nothing
                is broadcast.

        Returns:
            Transaction hash, available immediately.

        Raises:
            LedgerSubmissionError: Classified failure.
        """
        ...

    async def broadcast_raw(self, raw_tx: str) -> str:
        """Broadcast an already signed transaction again.

        Returns:
            Transaction hash.

        Raises:
            LedgerSubmissionError: Classified failure; "nonce_conflict" when
                the node already has the transaction or mined it.
        """
        ...

    async def wait_for_inclusion(
        self, tx_ref: str, timeout: float | None = None
    ) -> SubmissionReceipt:
        """Block until the transaction is included.

        Raises:
            TransientSubmissionError: Deadline exceeded ("confirmation_timeout").
            PermanentLedgerRejectionError: Mined but reverted.
        """
        ...

    async def submit(
        self,
        ledger_proposal_id: int,
        ciphertext_handle: str,
        proof: str | None,
        submitter_identity: str | None = None,
    ) -> SubmissionReceipt:
        """send_vote followed by wait_for_inclusion."""
        ...

    async def aggregate(
        self, ledger_proposal_id: int, handles: list[str]
    ) -> AggregationReceipt:
        """Request ledger-side homomorphic summation of the given handles.

        Raises:
            LedgerSubmissionError: Classified failure.
        """
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


__all__ = [
    "AggregationReceipt",
    "LedgerSubmissionClientProtocol",
    "SignedTransactionHook",
    "SubmissionReceipt",
]
