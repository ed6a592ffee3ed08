"""Pure domain services (no I/O)."""

from privote.domain.services.ciphertext import (
    is_handle,
    is_opaque_ciphertext,
    parse_handles,
    proof_bytes,
    to_bytes32,
)
from privote.domain.services.revert_classifier import ClassifiedFailure, RevertClassifier

__all__ = [
    "ClassifiedFailure",
    "RevertClassifier",
    "is_handle",
    "is_opaque_ciphertext",
    "parse_handles",
    "proof_bytes",
    "to_bytes32",
]
