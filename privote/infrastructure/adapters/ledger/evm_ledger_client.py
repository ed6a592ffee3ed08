"""EVM ledger client for the confidential voting contract.

All transactions are signed locally by the shared project key and
broadcast with eth_sendRawTransaction as legacy (gasPrice) transactions.
A vote caller can learn the transaction hash between signing and
broadcast, so it never loses track of a transaction the node accepted. Contract methods used:

    submitVote(uint256 proposalId, bytes32 encryptedVote, bytes inputProof)
    computeTally(uint256 proposalId)
    getEncryptedTally(uint256 proposalId) view returns (bytes32)

Every failure is classified by RevertClassifier. Gas estimation replays
the call before broadcast, so most contract rejections ("Already voted",
"Voting ended") surface as permanent errors without spending gas. A mined
transaction with status 0 is replayed with eth_call to recover the revert
reason.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from eth_abi import decode, encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from privote.application.ports.ledger_client import (
    AggregationReceipt,
    SignedTransactionHook,
    SubmissionReceipt,
)
from privote.config.pipeline_config import LedgerConfig
from privote.domain.errors import (
    LedgerNotInitializedError,
    PermanentLedgerRejectionError,
    TransientSubmissionError,
)
from privote.domain.services.ciphertext import proof_bytes, to_bytes32
from privote.domain.services.revert_classifier import RevertClassifier
from privote.infrastructure.adapters.ledger.json_rpc import JsonRpcClient, JsonRpcError

logger = structlog.get_logger()

SUBMIT_VOTE = "submitVote(uint256,bytes32,bytes)"
COMPUTE_TALLY = "computeTally(uint256)"
GET_ENCRYPTED_TALLY = "getEncryptedTally(uint256)"

GAS_ESTIMATE_MULTIPLIER = 1.2
LOW_BALANCE_WEI = 10**16  # 0.01 ETH


def encode_call(signature: str, types: list[str], values: list[Any]) -> str:
    """ABI-encode a contract call as 0x-prefixed calldata."""
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(types, values)).hex()


class EvmLedgerClient:
    """LedgerSubmissionClientProtocol implementation over JSON-RPC.

    Usage:
        client = await EvmLedgerClient.create(LedgerConfig.from_environment())
        tx_ref = await client.send_vote(7, "0xab...", "0x")
        receipt = await client.wait_for_inclusion(tx_ref)
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        account: LocalAccount,
        contract_address: str,
        chain_id: int,
        confirmation_timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 2.0,
        gas_limit: int = 3_000_000,
        classifier: RevertClassifier | None = None,
    ) -> None:
        self._rpc = rpc
        self._account = account
        self._contract = to_checksum_address(contract_address)
        self._chain_id = chain_id
        self._confirmation_timeout = confirmation_timeout_seconds
        self._poll_interval = poll_interval_seconds
        self._gas_limit = gas_limit
        self._classifier = classifier or RevertClassifier()
        self._nonce_lock = asyncio.Lock()
        self._initialized = False

    @classmethod
    async def create(cls, config: LedgerConfig) -> EvmLedgerClient:
        """Build and initialize a client from configuration.

        Raises:
            ValueError: If required settings are missing.
        """
        missing = config.missing_settings()
        if missing:
            raise ValueError(f"Missing ledger configuration: {', '.join(missing)}")
        assert config.project_private_key is not None
        assert config.voting_contract_address is not None
        client = cls(
            rpc=JsonRpcClient(config.rpc_url, timeout=config.rpc_timeout_seconds),
            account=Account.from_key(config.project_private_key),
            contract_address=config.voting_contract_address,
            chain_id=config.chain_id,
            confirmation_timeout_seconds=config.confirmation_timeout_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            gas_limit=config.gas_limit,
        )
        return await client.initialize()

    @property
    def submitter_address(self) -> str:
        return self._account.address

    async def initialize(self) -> EvmLedgerClient:
        if self._initialized:
            return self
        chain_id = int(await self._call("eth_chainId", []), 16)
        if chain_id != self._chain_id:
            raise ValueError(
                f"RPC endpoint serves chain {chain_id}, expected {self._chain_id}"
            )
        balance = int(
            await self._call("eth_getBalance", [self.submitter_address, "latest"]), 16
        )
        if balance < LOW_BALANCE_WEI:
            logger.warning(
                "submitter_balance_low",
                address=self.submitter_address,
                balance_wei=balance,
            )
        self._initialized = True
        logger.info(
            "ledger_client_initialized",
            contract=self._contract,
            submitter=self.submitter_address,
            chain_id=chain_id,
        )
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
            data = encode_call(
                SUBMIT_VOTE,
                ["uint256", "bytes32", "bytes"],
                [ledger_proposal_id, to_bytes32(ciphertext_handle), proof_bytes(proof)],
            )
        except ValueError as e:
            raise PermanentLedgerRejectionError("malformed_handle", str(e)) from e

        tx_ref = await self._send_transaction(data, on_signed)
        logger.info(
            "vote_tx_broadcast",
            tx_ref=tx_ref,
            ledger_proposal_id=ledger_proposal_id,
            submitter_identity=submitter_identity,
        )
        return tx_ref

    async def broadcast_raw(self, raw_tx: str) -> str:
        self._ensure_initialized()
        tx_ref = str(await self._call("eth_sendRawTransaction", [raw_tx]))
        logger.info("vote_tx_rebroadcast", tx_ref=tx_ref)
        return tx_ref

    async def wait_for_inclusion(
        self, tx_ref: str, timeout: float | None = None
    ) -> SubmissionReceipt:
        self._ensure_initialized()
        deadline = time.monotonic() + (timeout or self._confirmation_timeout)
        while True:
            try:
                receipt = await self._call("eth_getTransactionReceipt", [tx_ref])
            except TransientSubmissionError as e:
                logger.warning("receipt_poll_failed", tx_ref=tx_ref, reason=e.reason)
                receipt = None

            if receipt is not None:
                block_ref = int(receipt["blockNumber"], 16)
                if int(receipt.get("status", "0x1"), 16) == 1:
                    return SubmissionReceipt(tx_ref=tx_ref, block_ref=block_ref)
                reason = await self._revert_reason(tx_ref, receipt)
                raise self._classifier.classify(reason, reverted=True).to_error(tx_ref)

            if time.monotonic() >= deadline:
                raise TransientSubmissionError(
                    "confirmation_timeout",
                    f"not included after {timeout or self._confirmation_timeout}s",
                    tx_ref=tx_ref,
                )
            await asyncio.sleep(self._poll_interval)

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
        """Run computeTally on-chain, then read back the encrypted tally.

        The contract sums the inputs it stored for the proposal, so
        ``handles`` only determines the reported vote count. A tally that
        was already computed (redelivered job) is read back as is.
        """
        self._ensure_initialized()
        data = encode_call(COMPUTE_TALLY, ["uint256"], [ledger_proposal_id])
        tx_ref: str | None
        try:
            tx_ref = await self._send_transaction(data)
            await self.wait_for_inclusion(tx_ref)
        except PermanentLedgerRejectionError as e:
            if e.reason != "tally_already_computed":
                raise
            logger.info("tally_already_computed", ledger_proposal_id=ledger_proposal_id)
            tx_ref = None

        tally_handle = await self._read_encrypted_tally(ledger_proposal_id)
        logger.info(
            "tally_aggregated",
            ledger_proposal_id=ledger_proposal_id,
            tx_ref=tx_ref,
            vote_count=len(handles),
        )
        return AggregationReceipt(
            tally_handle=tally_handle, tx_ref=tx_ref, vote_count=len(handles)
        )

    async def close(self) -> None:
        await self._rpc.close()
        self._initialized = False

    async def _send_transaction(
        self, data: str, on_signed: SignedTransactionHook | None = None
    ) -> str:
        call = {"from": self.submitter_address, "to": self._contract, "data": data}
        try:
            estimate = int(await self._call("eth_estimateGas", [call]), 16)
            gas = min(int(estimate * GAS_ESTIMATE_MULTIPLIER), self._gas_limit)
        except TransientSubmissionError as e:
            if e.reason != "unknown_rpc_error":
                raise
            gas = self._gas_limit
        gas_price = int(await self._call("eth_gasPrice", []), 16)

        async with self._nonce_lock:
            nonce = int(
                await self._call(
                    "eth_getTransactionCount", [self.submitter_address, "pending"]
                ),
                16,
            )
            tx = {
                "to": self._contract,
                "data": data,
                "value": 0,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self._chain_id,
            }
            signed = await asyncio.to_thread(self._account.sign_transaction, tx)
            raw = "0x" + bytes(signed.raw_transaction).hex()
            if on_signed is not None:
                await on_signed("0x" + bytes(signed.hash).hex(), raw)
            return str(await self._call("eth_sendRawTransaction", [raw]))

    async def _read_encrypted_tally(self, ledger_proposal_id: int) -> str:
        data = encode_call(GET_ENCRYPTED_TALLY, ["uint256"], [ledger_proposal_id])
        call = {"to": self._contract, "data": data}
        result = await self._call("eth_call", [call, "latest"])
        (handle,) = decode(["bytes32"], bytes.fromhex(str(result)[2:]))
        return "0x" + handle.hex()

    async def _revert_reason(self, tx_ref: str, receipt: dict[str, Any]) -> str:
        """Replay a reverted transaction at its block to recover the reason."""
        try:
            tx = await self._rpc.call("eth_getTransactionByHash", [tx_ref])
            await self._rpc.call(
                "eth_call",
                [
                    {"from": tx["from"], "to": tx["to"], "data": tx["input"]},
                    receipt["blockNumber"],
                ],
            )
        except JsonRpcError as e:
            return str(e)
        return "execution reverted"

    async def _call(self, method: str, params: list[Any]) -> Any:
        try:
            return await self._rpc.call(method, params)
        except JsonRpcError as e:
            failure = self._classifier.classify(str(e))
            logger.debug(
                "ledger_rpc_failed",
                method=method,
                failure_class=failure.failure_class.value,
                reason=failure.reason,
            )
            raise failure.to_error() from e

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise LedgerNotInitializedError("EvmLedgerClient")


__all__ = ["EvmLedgerClient", "encode_call"]
