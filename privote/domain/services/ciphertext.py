"""Parsing of client-supplied ciphertext references.

Clients send either a single ciphertext handle (``0x``-prefixed hex, at
most 32 bytes) or a JSON array of such handles. Anything else is an
opaque client ciphertext that must be registered with the relayer before
it can be submitted.
"""

from __future__ import annotations

import json
import re

HANDLE_BYTES = 32
_HANDLE_RE = re.compile(r"^0x[0-9a-fA-F]{2,64}$")


def is_handle(value: str) -> bool:
    """Whether ``value`` is a ready-to-submit ciphertext handle."""
    return bool(_HANDLE_RE.match(value)) and len(value) % 2 == 0


def parse_handles(ciphertext_ref: str) -> list[str] | None:
    """Extract ready-to-submit handles from a ciphertext reference.

    Args:
        ciphertext_ref: Raw reference from the client.

    Returns:
        List of handles, or None if the reference is not made of handles.
    """
    ref = ciphertext_ref.strip()
    if ref.startswith("["):
        try:
            parsed = json.loads(ref)
        except json.JSONDecodeError:
            return None
        if (
            isinstance(parsed, list)
            and parsed
            and all(isinstance(h, str) and is_handle(h) for h in parsed)
        ):
            return parsed
        return None
    if is_handle(ref):
        return [ref]
    return None


def is_opaque_ciphertext(ciphertext_ref: str) -> bool:
    """Whether the reference is a raw client ciphertext for the relayer.

    References shaped like handles (``0x`` prefix) or handle arrays (``[``)
    that fail to parse are malformed, not opaque.
    """
    ref = ciphertext_ref.strip()
    return bool(ref) and not ref.startswith(("[", "0x", "0X"))


def to_bytes32(handle: str) -> bytes:
    """Encode a handle as the ledger's fixed-width bytes32.

    Shorter handles are right-padded with zero bytes.

    Raises:
        ValueError: If the handle is not hex or exceeds 32 bytes.
    """
    if not is_handle(handle):
        raise ValueError(f"Invalid ciphertext handle: {handle[:20]!r}")
    raw = bytes.fromhex(handle[2:])
    if len(raw) > HANDLE_BYTES:
        raise ValueError(f"Ciphertext handle exceeds {HANDLE_BYTES} bytes")
    return raw.ljust(HANDLE_BYTES, b"\x00")


def proof_bytes(proof: str | None) -> bytes:
    """Decode an input proof. A missing or ``0x`` proof is empty.

    Raises:
        ValueError: If the proof is not hex.
    """
    if not proof or proof == "0x":
        return b""
    value = proof[2:] if proof.startswith("0x") else proof
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ValueError("Input proof is not valid hex") from e


__all__ = [
    "HANDLE_BYTES",
    "is_handle",
    "is_opaque_ciphertext",
    "parse_handles",
    "proof_bytes",
    "to_bytes32",
]
