"""FHE relayer stub for testing and local runs.

register_input derives a stable handle from the client ciphertext;
public_decrypt answers from values seeded by the test.
"""

from __future__ import annotations

import hashlib
from collections import deque

from privote.application.ports.fhe_relayer import DecryptionResult, EncryptedInput
from privote.domain.errors import RelayerError


class FheRelayerStub:
    """Stub implementation of FheRelayerProtocol.

    Usage:
        relayer = FheRelayerStub()
        relayer.set_clear_value("0xabc...", 3)
        relayer.script_failures(RelayerError(FailureClass.TRANSIENT, "relayer_timeout"))
    """

    def __init__(self) -> None:
        self._clear_values: dict[str, int] = {}
        self._script: deque[RelayerError] = deque()
        self.registered: list[str] = []
        self.decrypted: list[str] = []

    def set_clear_value(self, handle: str, value: int) -> None:
        self._clear_values[handle.lower()] = value

    def script_failures(self, *errors: RelayerError) -> None:
        """Queue failures for upcoming calls (either operation)."""
        self._script.extend(errors)

    async def register_input(
        self,
        ciphertext_ref: str,
        proof_ref: str | None,
        contract_address: str,
        user_address: str,
    ) -> EncryptedInput:
        if self._script:
            raise self._script.popleft()
        self.registered.append(ciphertext_ref)
        handle = "0x" + hashlib.sha256(ciphertext_ref.encode()).hexdigest()
        proof = "0x" + hashlib.sha256(
            f"{handle}:{contract_address}:{user_address}".encode()
        ).hexdigest()
        return EncryptedInput(handles=[handle], input_proof=proof)

    async def public_decrypt(self, handle: str) -> DecryptionResult:
        if self._script:
            raise self._script.popleft()
        self.decrypted.append(handle)
        return DecryptionResult(
            handle=handle,
            clear_value=self._clear_values.get(handle.lower(), 0),
            decryption_proof="0x" + hashlib.sha256(handle.encode()).hexdigest(),
        )

    async def close(self) -> None:
        return None
