"""Unit tests for the JSON-RPC client and the EVM ledger client.

The node is replaced by httpx.MockTransport (JSON-RPC client) or by a
scripted RPC double (ledger client); transactions are really signed.
"""

import json
from typing import Any

import httpx
import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import keccak

from privote.config.pipeline_config import LedgerConfig
from privote.domain.errors import (
    LedgerNotInitializedError,
    PermanentLedgerRejectionError,
    TransientSubmissionError,
)
from privote.infrastructure.adapters.ledger import (
    EvmLedgerClient,
    JsonRpcClient,
    JsonRpcError,
    decode_revert_data,
    encode_call,
)
from privote.infrastructure.adapters.ledger.json_rpc import ERROR_STRING_SELECTOR

PRIVATE_KEY = "0x" + "01" * 32
CONTRACT = "0x" + "22" * 20
CHAIN_ID = 31337
HANDLE = "0x" + "ab" * 32
TX_HASH = "0x" + "ee" * 32
TALLY_HANDLE = "0x" + "77" * 32
TALLY_RESULT = "0x" + encode(["bytes32"], [bytes.fromhex("77" * 32)]).hex()


def revert_data(reason: str) -> str:
    return "0x" + (ERROR_STRING_SELECTOR + encode(["string"], [reason])).hex()


class ScriptedRpc:
    """JSON-RPC double answering per method from a script.

    A script entry is a value, an exception, or a list consumed in order.
    """

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, list[Any]]] = []
        self.closed = False

    async def call(self, method: str, params: list[Any]) -> Any:
        self.calls.append((method, params))
        response = self.responses[method]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def close(self) -> None:
        self.closed = True


def base_responses(**overrides: Any) -> dict[str, Any]:
    responses: dict[str, Any] = {
        "eth_chainId": hex(CHAIN_ID),
        "eth_getBalance": hex(10**18),
        "eth_estimateGas": hex(100_000),
        "eth_gasPrice": hex(10**9),
        "eth_getTransactionCount": "0x0",
        "eth_sendRawTransaction": TX_HASH,
        "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x1"},
    }
    responses.update(overrides)
    return responses


async def make_client(rpc: ScriptedRpc, **kwargs: Any) -> EvmLedgerClient:
    client = EvmLedgerClient(
        rpc=rpc,
        account=Account.from_key(PRIVATE_KEY),
        contract_address=CONTRACT,
        chain_id=CHAIN_ID,
        poll_interval_seconds=0.01,
        **kwargs,
    )
    return await client.initialize()


# =============================================================================
# JSON-RPC client
# =============================================================================


class TestDecodeRevertData:
    def test_error_string(self) -> None:
        assert decode_revert_data(revert_data("Already voted")) == "Already voted"

    def test_nested_data_object(self) -> None:
        assert decode_revert_data({"data": revert_data("Voting ended")}) == "Voting ended"

    @pytest.mark.parametrize("data", [None, 42, "0x", "0xzz", "0x12345678"])
    def test_other_payloads(self, data: Any) -> None:
        assert decode_revert_data(data) is None


class TestJsonRpcClient:
    @staticmethod
    def _client(handler) -> JsonRpcClient:
        transport = httpx.MockTransport(handler)
        return JsonRpcClient(
            "http://node.test", client=httpx.AsyncClient(transport=transport)
        )

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x1"}
            )

        client = self._client(handler)
        assert await client.call("eth_chainId", []) == "0x1"
        assert await client.call("eth_chainId", []) == "0x1"
        await client.close()

        assert seen[0]["method"] == "eth_chainId"
        assert seen[1]["id"] == seen[0]["id"] + 1

    @pytest.mark.asyncio
    async def test_error_object_includes_revert_reason(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": 1,
                    "error": {
                        "code": 3,
                        "message": "execution reverted",
                        "data": revert_data("Already voted"),
                    },
                },
            )

        with pytest.raises(JsonRpcError) as exc_info:
            await self._client(handler).call("eth_estimateGas", [{}])

        assert str(exc_info.value) == "execution reverted: Already voted"
        assert exc_info.value.code == 3

    @pytest.mark.asyncio
    async def test_http_status_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="busy")

        with pytest.raises(JsonRpcError, match="HTTP 503"):
            await self._client(handler).call("eth_gasPrice", [])

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(JsonRpcError, match="timeout"):
            await self._client(handler).call("eth_gasPrice", [])

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(JsonRpcError, match="connection error"):
            await self._client(handler).call("eth_gasPrice", [])


# =============================================================================
# EVM ledger client
# =============================================================================


class TestInitialize:
    @pytest.mark.asyncio
    async def test_checks_chain_id(self) -> None:
        rpc = ScriptedRpc(base_responses(eth_chainId=hex(1)))

        with pytest.raises(ValueError, match="expected 31337"):
            await make_client(rpc)

    @pytest.mark.asyncio
    async def test_low_balance_only_warns(self) -> None:
        client = await make_client(ScriptedRpc(base_responses(eth_getBalance="0x0")))

        assert client.submitter_address == Account.from_key(PRIVATE_KEY).address

    @pytest.mark.asyncio
    async def test_use_before_initialize(self) -> None:
        client = EvmLedgerClient(
            rpc=ScriptedRpc(base_responses()),
            account=Account.from_key(PRIVATE_KEY),
            contract_address=CONTRACT,
            chain_id=CHAIN_ID,
        )

        with pytest.raises(LedgerNotInitializedError):
            await client.send_vote(1, HANDLE, None)

    @pytest.mark.asyncio
    async def test_create_requires_settings(self) -> None:
        with pytest.raises(ValueError, match="voting_contract_address"):
            await EvmLedgerClient.create(LedgerConfig(mode="evm"))


class TestSendVote:
    @pytest.mark.asyncio
    async def test_signs_and_broadcasts(self) -> None:
        rpc = ScriptedRpc(base_responses())
        client = await make_client(rpc)

        tx_ref = await client.send_vote(7, HANDLE, "0xdead", submitter_identity="s")

        assert tx_ref == TX_HASH
        assert rpc.methods()[-4:] == [
            "eth_estimateGas",
            "eth_gasPrice",
            "eth_getTransactionCount",
            "eth_sendRawTransaction",
        ]
        estimate_call = rpc.calls[-4][1][0]
        assert estimate_call["to"].lower() == CONTRACT
        assert estimate_call["data"] == encode_call(
            "submitVote(uint256,bytes32,bytes)",
            ["uint256", "bytes32", "bytes"],
            [7, bytes.fromhex("ab" * 32), b"\xde\xad"],
        )
        raw = rpc.calls[-1][1][0]
        assert raw.startswith("0x") and len(raw) > 2

    @pytest.mark.asyncio
    async def test_signed_hook_sees_hash_before_broadcast(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_sendRawTransaction=JsonRpcError(
                    "eth_sendRawTransaction", "HTTP 503: busy"
                )
            )
        )
        client = await make_client(rpc)
        seen = []

        async def on_signed(tx_ref: str, raw_tx: str) -> None:
            seen.append((tx_ref, raw_tx, rpc.methods()[-1]))

        with pytest.raises(TransientSubmissionError):
            await client.send_vote(7, HANDLE, None, on_signed=on_signed)

        tx_ref, raw_tx, last_method = seen[0]
        assert last_method == "eth_getTransactionCount"
        assert rpc.calls[-1] == ("eth_sendRawTransaction", [raw_tx])
        assert tx_ref == "0x" + keccak(hexstr=raw_tx).hex()

    @pytest.mark.asyncio
    async def test_broadcast_raw_classifies_known_tx(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_sendRawTransaction=JsonRpcError(
                    "eth_sendRawTransaction", "already known"
                )
            )
        )
        client = await make_client(rpc)

        with pytest.raises(TransientSubmissionError) as exc_info:
            await client.broadcast_raw("0xf86c")

        assert exc_info.value.reason == "nonce_conflict"

    @pytest.mark.asyncio
    async def test_estimate_revert_is_permanent(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_estimateGas=JsonRpcError(
                    "eth_estimateGas",
                    "execution reverted",
                    data=revert_data("Already voted"),
                )
            )
        )
        client = await make_client(rpc)

        with pytest.raises(PermanentLedgerRejectionError) as exc_info:
            await client.send_vote(7, HANDLE, None)

        assert exc_info.value.reason == "already_voted"
        assert "eth_sendRawTransaction" not in rpc.methods()

    @pytest.mark.asyncio
    async def test_node_outage_is_transient(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_sendRawTransaction=JsonRpcError(
                    "eth_sendRawTransaction", "HTTP 503: busy"
                )
            )
        )
        client = await make_client(rpc)

        with pytest.raises(TransientSubmissionError) as exc_info:
            await client.send_vote(7, HANDLE, None)

        assert exc_info.value.reason == "node_unavailable"

    @pytest.mark.asyncio
    async def test_unclassified_estimate_failure_uses_gas_limit(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_estimateGas=JsonRpcError("eth_estimateGas", "method not supported")
            )
        )
        client = await make_client(rpc, gas_limit=500_000)

        assert await client.send_vote(7, HANDLE, None) == TX_HASH

    @pytest.mark.asyncio
    async def test_malformed_handle(self) -> None:
        client = await make_client(ScriptedRpc(base_responses()))

        with pytest.raises(PermanentLedgerRejectionError) as exc_info:
            await client.send_vote(7, "0x" + "ab" * 40, None)

        assert exc_info.value.reason == "malformed_handle"


class TestWaitForInclusion:
    @pytest.mark.asyncio
    async def test_polls_until_mined(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_getTransactionReceipt=[
                    None,
                    JsonRpcError("eth_getTransactionReceipt", "timeout: read"),
                    {"blockNumber": "0x2a", "status": "0x1"},
                ]
            )
        )
        client = await make_client(rpc)

        receipt = await client.wait_for_inclusion(TX_HASH, timeout=5)

        assert receipt.tx_ref == TX_HASH
        assert receipt.block_ref == 42

    @pytest.mark.asyncio
    async def test_deadline_is_transient_timeout(self) -> None:
        rpc = ScriptedRpc(base_responses(eth_getTransactionReceipt=None))
        client = await make_client(rpc)

        with pytest.raises(TransientSubmissionError) as exc_info:
            await client.wait_for_inclusion(TX_HASH, timeout=0.03)

        assert exc_info.value.reason == "confirmation_timeout"
        assert exc_info.value.tx_ref == TX_HASH

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_replayed_for_reason(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_getTransactionReceipt={"blockNumber": "0x2a", "status": "0x0"},
                eth_getTransactionByHash={"from": "0x1", "to": CONTRACT, "input": "0x"},
                eth_call=JsonRpcError(
                    "eth_call", "execution reverted", data=revert_data("Voting ended")
                ),
            )
        )
        client = await make_client(rpc)

        with pytest.raises(PermanentLedgerRejectionError) as exc_info:
            await client.wait_for_inclusion(TX_HASH)

        assert exc_info.value.reason == "voting_ended"
        assert exc_info.value.tx_ref == TX_HASH

    @pytest.mark.asyncio
    async def test_reverted_receipt_without_reason(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_getTransactionReceipt={"blockNumber": "0x2a", "status": "0x0"},
                eth_getTransactionByHash={"from": "0x1", "to": CONTRACT, "input": "0x"},
                eth_call="0x",
            )
        )
        client = await make_client(rpc)

        with pytest.raises(PermanentLedgerRejectionError) as exc_info:
            await client.wait_for_inclusion(TX_HASH)

        assert exc_info.value.reason == "unrecognized_revert"


class TestAggregate:
    @pytest.mark.asyncio
    async def test_computes_then_reads_tally(self) -> None:
        rpc = ScriptedRpc(
            base_responses(eth_call=TALLY_RESULT)
        )
        client = await make_client(rpc)

        receipt = await client.aggregate(9, [HANDLE, HANDLE])

        assert receipt.tally_handle == TALLY_HANDLE
        assert receipt.tx_ref == TX_HASH
        assert receipt.vote_count == 2

    @pytest.mark.asyncio
    async def test_already_computed_reads_existing_tally(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_estimateGas=JsonRpcError(
                    "eth_estimateGas",
                    "execution reverted",
                    data=revert_data("Tally already computed"),
                ),
                eth_call=TALLY_RESULT,
            )
        )
        client = await make_client(rpc)

        receipt = await client.aggregate(9, [HANDLE])

        assert receipt.tally_handle == TALLY_HANDLE
        assert receipt.tx_ref is None

    @pytest.mark.asyncio
    async def test_other_revert_propagates(self) -> None:
        rpc = ScriptedRpc(
            base_responses(
                eth_estimateGas=JsonRpcError(
                    "eth_estimateGas",
                    "execution reverted",
                    data=revert_data("Proposal not closed"),
                )
            )
        )
        client = await make_client(rpc)

        with pytest.raises(PermanentLedgerRejectionError) as exc_info:
            await client.aggregate(9, [HANDLE])

        assert exc_info.value.reason == "proposal_not_closed"

    @pytest.mark.asyncio
    async def test_close_releases_rpc(self) -> None:
        rpc = ScriptedRpc(base_responses())
        client = await make_client(rpc)

        await client.close()

        assert rpc.closed
