"""FHE relayer adapters."""

from privote.infrastructure.adapters.relayer.http_relayer_client import (
    HttpRelayerClient,
)

__all__: list[str] = ["HttpRelayerClient"]
