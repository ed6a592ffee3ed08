"""Unit tests for HttpRelayerClient against httpx.MockTransport."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from privote.domain.errors import FailureClass, RelayerError
from privote.infrastructure.adapters.relayer import HttpRelayerClient

HANDLE = "0x" + "ab" * 32


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpRelayerClient:
    return HttpRelayerClient(
        "https://relayer.test/",
        chain_id=11155111,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def respond(status: int, body: Any = None, text: str | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body)

    return handler


class TestRegisterInput:
    @pytest.mark.asyncio
    async def test_posts_registration_and_parses_handles(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, json={"response": {"handles": [HANDLE], "inputProof": "0xbeef"}}
            )

        client = make_client(handler)
        encrypted = await client.register_input("blob", None, "0xc", "0xu")
        await client.close()

        assert encrypted.handles == [HANDLE]
        assert encrypted.input_proof == "0xbeef"
        assert str(requests[0].url) == "https://relayer.test/v1/input-proof"
        sent = json.loads(requests[0].content)
        assert sent["contractAddress"] == "0xc"
        assert sent["userAddress"] == "0xu"
        assert sent["contractChainId"] == 11155111
        assert sent["ciphertextWithInputVerification"] == "blob"

    @pytest.mark.asyncio
    async def test_unwrapped_body(self) -> None:
        client = make_client(respond(200, {"handles": [HANDLE]}))

        encrypted = await client.register_input("blob", None, "0xc", "0xu")

        assert encrypted.input_proof == "0x"

    @pytest.mark.asyncio
    async def test_no_handles_is_permanent(self) -> None:
        client = make_client(respond(200, {"handles": []}))

        with pytest.raises(RelayerError) as exc_info:
            await client.register_input("blob", None, "0xc", "0xu")

        assert exc_info.value.failure_class is FailureClass.PERMANENT
        assert exc_info.value.reason == "relayer_bad_response"


class TestFailureClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "failure_class", "reason"),
        [
            (429, FailureClass.TRANSIENT, "relayer_unavailable"),
            (502, FailureClass.TRANSIENT, "relayer_unavailable"),
            (400, FailureClass.PERMANENT, "relayer_rejected"),
            (404, FailureClass.PERMANENT, "relayer_rejected"),
        ],
    )
    async def test_http_status(
        self, status: int, failure_class: FailureClass, reason: str
    ) -> None:
        client = make_client(respond(status, text="nope"))

        with pytest.raises(RelayerError) as exc_info:
            await client.public_decrypt(HANDLE)

        assert exc_info.value.failure_class is failure_class
        assert exc_info.value.reason == reason

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(RelayerError) as exc_info:
            await make_client(handler).register_input("blob", None, "0xc", "0xu")

        assert exc_info.value.is_transient
        assert exc_info.value.reason == "relayer_timeout"

    @pytest.mark.asyncio
    async def test_non_json_body_is_permanent(self) -> None:
        client = make_client(respond(200, text="<html>"))

        with pytest.raises(RelayerError) as exc_info:
            await client.public_decrypt(HANDLE)

        assert exc_info.value.reason == "relayer_bad_response"


class TestPublicDecrypt:
    @pytest.mark.asyncio
    async def test_clear_value_by_handle(self) -> None:
        client = make_client(
            respond(
                200,
                {
                    "response": {
                        "clearValues": {HANDLE: "0x05"},
                        "decryptionProof": "0xproof",
                    }
                },
            )
        )

        result = await client.public_decrypt(HANDLE)

        assert result.clear_value == 5
        assert result.decryption_proof == "0xproof"
        assert result.handle == HANDLE

    @pytest.mark.asyncio
    async def test_decrypted_value_fallback(self) -> None:
        client = make_client(respond(200, {"decryptedValue": 12}))

        assert (await client.public_decrypt(HANDLE)).clear_value == 12

    @pytest.mark.asyncio
    async def test_missing_value_is_permanent(self) -> None:
        client = make_client(respond(200, {"clearValues": {}}))

        with pytest.raises(RelayerError) as exc_info:
            await client.public_decrypt(HANDLE)

        assert exc_info.value.reason == "relayer_bad_response"
