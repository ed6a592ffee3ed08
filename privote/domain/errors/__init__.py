"""Domain errors for the Privote pipeline.

Provides specific exception classes for different failure scenarios.
All exceptions inherit from PrivoteError.
"""

from privote.domain.errors.ledger import (
    ExternalCallError,
    FailureClass,
    LedgerNotInitializedError,
    LedgerSubmissionError,
    PermanentLedgerRejectionError,
    RelayerError,
    TransientSubmissionError,
)
from privote.domain.errors.queue import QueueUnavailableError
from privote.domain.errors.tally import TallyNotReadyError, TallyPreconditionUnmetError
from privote.domain.errors.vote import (
    DuplicateVoteError,
    MalformedCiphertextError,
    ProposalNotFoundError,
    ProposalNotOpenError,
    ValidationRejectionError,
    VoteRecordNotFoundError,
)
from privote.domain.exceptions import PrivoteError

__all__: list[str] = [
    "DuplicateVoteError",
    "ExternalCallError",
    "FailureClass",
    "LedgerNotInitializedError",
    "LedgerSubmissionError",
    "MalformedCiphertextError",
    "PermanentLedgerRejectionError",
    "PrivoteError",
    "ProposalNotFoundError",
    "ProposalNotOpenError",
    "QueueUnavailableError",
    "RelayerError",
    "TallyNotReadyError",
    "TallyPreconditionUnmetError",
    "TransientSubmissionError",
    "ValidationRejectionError",
    "VoteRecordNotFoundError",
]
