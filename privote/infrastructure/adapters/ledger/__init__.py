"""Ledger adapters."""

from privote.infrastructure.adapters.ledger.evm_ledger_client import (
    EvmLedgerClient,
    encode_call,
)
from privote.infrastructure.adapters.ledger.json_rpc import (
    JsonRpcClient,
    JsonRpcError,
    decode_revert_data,
)

__all__: list[str] = [
    "EvmLedgerClient",
    "JsonRpcClient",
    "JsonRpcError",
    "decode_revert_data",
    "encode_call",
]
