"""Ledger failure classification.

Maps raw ledger/RPC failure messages onto a FailureClass and a short
reason. This is the single place deciding whether a failed submission is
retried: a permanent rejection misread as transient burns retries and
leaves the vote pending past its window, while a transient failure misread
as permanent loses the vote.

Rules, in order:
1. A known contract revert reason -> PERMANENT with that reason.
2. A known transport/node condition -> TRANSIENT with that reason.
3. Any other revert -> PERMANENT ("unrecognized_revert"). The contract
   executed and rejected the call; replaying it cannot succeed.
4. Anything else -> TRANSIENT ("unknown_rpc_error").

Matching is case-insensitive substring matching, mirroring how the
voting contract's require() messages surface through JSON-RPC errors
("execution reverted: Already voted").
"""

from __future__ import annotations

from dataclasses import dataclass

from privote.domain.errors.ledger import (
    FailureClass,
    LedgerSubmissionError,
    PermanentLedgerRejectionError,
    TransientSubmissionError,
)

# Contract require() messages that can never succeed on replay
PERMANENT_REVERT_PATTERNS: tuple[tuple[str, str], ...] = (
    ("already voted", "already_voted"),
    ("proposal closed", "voting_closed"),
    ("voting closed", "voting_closed"),
    ("voting not started", "voting_not_started"),
    ("voting ended", "voting_ended"),
    ("proposal does not exist", "proposal_not_found"),
    ("invalid proposal", "proposal_not_found"),
    ("invalid input proof", "invalid_proof"),
    ("invalid proof", "invalid_proof"),
    ("tally already computed", "tally_already_computed"),
    ("proposal not closed", "proposal_not_closed"),
    ("caller is not the owner", "unauthorized"),
    ("not authorized", "unauthorized"),
)

# Node/transport conditions that clear up on their own
TRANSIENT_PATTERNS: tuple[tuple[str, str], ...] = (
    ("timeout", "timeout"),
    ("timed out", "timeout"),
    ("rate limit", "rate_limited"),
    ("too many requests", "rate_limited"),
    ("http 429", "rate_limited"),
    ("http 503", "node_unavailable"),
    ("http 502", "node_unavailable"),
    ("temporarily unavailable", "node_unavailable"),
    ("header not found", "node_unavailable"),
    ("connection", "node_unavailable"),
    ("nonce too low", "nonce_conflict"),
    ("replacement transaction underpriced", "nonce_conflict"),
    ("already known", "nonce_conflict"),
    ("insufficient funds", "submitter_underfunded"),
)

REVERT_MARKERS: tuple[str, ...] = ("execution reverted", "revert", "vm exception")


@dataclass(frozen=True)
class ClassifiedFailure:
    """Outcome of classifying a ledger failure.

    Attributes:
        failure_class: TRANSIENT or PERMANENT.
        reason: Short machine-readable reason.
        detail: The raw message that was classified.
    """

    failure_class: FailureClass
    reason: str
    detail: str

    @property
    def is_transient(self) -> bool:
        return self.failure_class is FailureClass.TRANSIENT

    def to_error(self, tx_ref: str | None = None) -> LedgerSubmissionError:
        """Build the matching typed error."""
        if self.is_transient:
            return TransientSubmissionError(self.reason, self.detail, tx_ref=tx_ref)
        return PermanentLedgerRejectionError(self.reason, self.detail, tx_ref=tx_ref)


class RevertClassifier:
    """Classifies ledger failures into transient and permanent.

    Extra patterns can be supplied for contracts with additional
    require() messages; they are checked before the built-in ones.

    Usage:
        classifier = RevertClassifier()
        failure = classifier.classify("execution reverted: Already voted")
        assert failure.reason == "already_voted"
    """

    def __init__(
        self,
        extra_permanent: tuple[tuple[str, str], ...] = (),
        extra_transient: tuple[tuple[str, str], ...] = (),
    ) -> None:
        self._permanent = tuple(extra_permanent) + PERMANENT_REVERT_PATTERNS
        self._transient = tuple(extra_transient) + TRANSIENT_PATTERNS

    def classify(self, message: str, reverted: bool = False) -> ClassifiedFailure:
        """Classify a raw failure message.

        Args:
            message: Error message from the node, relayer or receipt replay.
            reverted: True when the failure is known to be a contract revert
                (e.g. a mined receipt with status 0).

        Returns:
            ClassifiedFailure with class and reason.
        """
        text = (message or "").lower()

        for pattern, reason in self._permanent:
            if pattern in text:
                return ClassifiedFailure(FailureClass.PERMANENT, reason, message)

        if not reverted:
            for pattern, reason in self._transient:
                if pattern in text:
                    return ClassifiedFailure(FailureClass.TRANSIENT, reason, message)

        if reverted or any(marker in text for marker in REVERT_MARKERS):
            return ClassifiedFailure(FailureClass.PERMANENT, "unrecognized_revert", message)

        return ClassifiedFailure(FailureClass.TRANSIENT, "unknown_rpc_error", message)


__all__ = [
    "PERMANENT_REVERT_PATTERNS",
    "TRANSIENT_PATTERNS",
    "ClassifiedFailure",
    "RevertClassifier",
]
