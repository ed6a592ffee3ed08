"""FHE relayer port.

The relayer registers client ciphertexts as on-chain input handles and
performs public decryption of publicly decryptable results. The pipeline
never sees plaintext votes and never chooses a vote value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EncryptedInput:
    """Ready-to-submit input produced by the relayer.

    Attributes:
        handles: Ciphertext handles (0x hex).
        input_proof: Proof to attach to the contract call.
    """

    handles: list[str]
    input_proof: str


@dataclass(frozen=True)
class DecryptionResult:
    """Public decryption of a handle.

    Attributes:
        handle: The decrypted handle.
        clear_value: Plaintext value.
        decryption_proof: Proof of correct decryption.
    """

    handle: str
    clear_value: int
    decryption_proof: str | None


class FheRelayerProtocol(Protocol):
    """Protocol for the FHE relayer collaborator."""

    async def register_input(
        self,
        ciphertext_ref: str,
        proof_ref: str | None,
        contract_address: str,
        user_address: str,
    ) -> EncryptedInput:
        """Register a client ciphertext and return submittable handles.

        Raises:
            RelayerError: Classified failure.
        """
        ...

    async def public_decrypt(self, handle: str) -> DecryptionResult:
        """Decrypt a publicly decryptable handle.

        Raises:
            RelayerError: Classified failure.
        """
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


__all__ = ["DecryptionResult", "EncryptedInput", "FheRelayerProtocol"]
