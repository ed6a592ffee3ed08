"""Minimal async JSON-RPC 2.0 client over httpx.

Transport failures and node error objects both surface as JsonRpcError,
with a message the revert classifier can read ("timeout", "HTTP 503",
"execution reverted: Already voted").
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx
import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

logger = structlog.get_logger()

ERROR_STRING_SELECTOR = function_signature_to_4byte_selector("Error(string)")


class JsonRpcError(Exception):
    """A JSON-RPC call failed.

    Attributes:
        method: RPC method called.
        code: JSON-RPC error code, or None for transport failures.
        data: Optional error data (revert payload for eth_call).
    """

    def __init__(
        self,
        method: str,
        message: str,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        self.method = method
        self.code = code
        self.data = data
        reason = decode_revert_data(data)
        if reason and reason not in message:
            message = f"{message}: {reason}"
        super().__init__(message)


def decode_revert_data(data: Any) -> str | None:
    """Decode an ``Error(string)`` revert payload, if that is what ``data`` is."""
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str) or not data.startswith("0x"):
        return None
    try:
        raw = bytes.fromhex(data[2:])
    except ValueError:
        return None
    if raw[:4] != ERROR_STRING_SELECTOR:
        return None
    try:
        (reason,) = decode(["string"], raw[4:])
    except DecodingError:
        return None
    return str(reason)


class JsonRpcClient:
    """Async JSON-RPC client for an Ethereum node."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def call(self, method: str, params: list[Any]) -> Any:
        """Invoke ``method`` and return its result.

        Raises:
            JsonRpcError: Transport failure or node error object.
        """
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client.post(self._url, json=request)
        except httpx.TimeoutException as e:
            raise JsonRpcError(method, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise JsonRpcError(method, f"connection error: {e}") from e

        if response.status_code >= 400:
            raise JsonRpcError(
                method, f"HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError as e:
            raise JsonRpcError(method, f"invalid JSON-RPC response: {e}") from e

        error = body.get("error")
        if error:
            raise JsonRpcError(
                method,
                str(error.get("message", "unknown error")),
                code=error.get("code"),
                data=error.get("data"),
            )
        return body.get("result")

    async def close(self) -> None:
        await self._client.aclose()
