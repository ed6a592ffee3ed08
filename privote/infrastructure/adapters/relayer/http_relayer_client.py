"""HTTP client for the FHE relayer.

Endpoints:
    POST {base}/v1/input-proof      register a client ciphertext
    POST {base}/v1/public-decrypt   decrypt a publicly decryptable handle

Responses may wrap their payload in a "response" object. Failures are
classified into RelayerError: timeouts, 429 and 5xx are transient, other
4xx and unusable responses are permanent.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from privote.application.ports.fhe_relayer import DecryptionResult, EncryptedInput
from privote.domain.errors import FailureClass, RelayerError

logger = structlog.get_logger()


def _unwrap(body: Any) -> dict[str, Any]:
    if isinstance(body, dict) and isinstance(body.get("response"), dict):
        return body["response"]
    if isinstance(body, dict):
        return body
    raise RelayerError(FailureClass.PERMANENT, "relayer_bad_response", repr(body)[:200])


def _parse_clear_value(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"unsupported clear value {value!r}")


class HttpRelayerClient:
    """FheRelayerProtocol implementation over HTTP.

    Args:
        base_url: Relayer base URL.
        chain_id: Host chain id sent with input registrations.
        timeout: Per-request timeout in seconds.
        client: Optional preconfigured httpx client (tests use MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        chain_id: int,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._chain_id = chain_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def register_input(
        self,
        ciphertext_ref: str,
        proof_ref: str | None,
        contract_address: str,
        user_address: str,
    ) -> EncryptedInput:
        body = _unwrap(
            await self._post(
                "/v1/input-proof",
                {
                    "contractAddress": contract_address,
                    "userAddress": user_address,
                    "contractChainId": self._chain_id,
                    "ciphertextWithInputVerification": ciphertext_ref,
                    "inputProof": proof_ref,
                    "extraData": "0x00",
                },
            )
        )
        handles = body.get("handles")
        if not isinstance(handles, list) or not handles:
            raise RelayerError(
                FailureClass.PERMANENT, "relayer_bad_response", "no handles returned"
            )
        proof = body.get("inputProof") or body.get("input_proof") or "0x"
        logger.info("relayer_input_registered", handle_count=len(handles))
        return EncryptedInput(handles=[str(h) for h in handles], input_proof=str(proof))

    async def public_decrypt(self, handle: str) -> DecryptionResult:
        body = _unwrap(
            await self._post(
                "/v1/public-decrypt",
                {"ciphertextHandles": [handle], "extraData": "0x00"},
            )
        )
        clear_values = body.get("clearValues") or {}
        raw = clear_values.get(handle) if isinstance(clear_values, dict) else None
        if raw is None:
            raw = body.get("decryptedValue")
        try:
            clear_value = _parse_clear_value(raw)
        except ValueError as e:
            raise RelayerError(
                FailureClass.PERMANENT, "relayer_bad_response", str(e)
            ) from e
        logger.info("relayer_public_decrypt_succeeded", handle_prefix=handle[:10])
        return DecryptionResult(
            handle=handle,
            clear_value=clear_value,
            decryption_proof=body.get("decryptionProof"),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise RelayerError(FailureClass.TRANSIENT, "relayer_timeout", str(e)) from e
        except httpx.TransportError as e:
            raise RelayerError(
                FailureClass.TRANSIENT, "relayer_unavailable", str(e)
            ) from e

        status = response.status_code
        if status == 429 or status >= 500:
            logger.warning("relayer_call_failed", path=path, status_code=status)
            raise RelayerError(
                FailureClass.TRANSIENT, "relayer_unavailable", f"HTTP {status}"
            )
        if status >= 400:
            logger.warning("relayer_call_rejected", path=path, status_code=status)
            raise RelayerError(
                FailureClass.PERMANENT,
                "relayer_rejected",
                f"HTTP {status}: {response.text[:200]}",
            )
        try:
            return response.json()
        except ValueError as e:
            raise RelayerError(
                FailureClass.PERMANENT, "relayer_bad_response", str(e)
            ) from e
