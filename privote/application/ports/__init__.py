"""Application ports (protocols) implemented by adapters and stubs."""

from privote.application.ports.fhe_relayer import (
    DecryptionResult,
    EncryptedInput,
    FheRelayerProtocol,
)
from privote.application.ports.idempotency_ledger import (
    IdempotencyLedgerProtocol,
    ReservationResult,
)
from privote.application.ports.job_queue import JobQueueProtocol
from privote.application.ports.ledger_client import (
    AggregationReceipt,
    LedgerSubmissionClientProtocol,
    SubmissionReceipt,
)
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.ports.vote_record_store import (
    TransitionResult,
    VoteRecordStoreProtocol,
)

__all__: list[str] = [
    "AggregationReceipt",
    "DecryptionResult",
    "EncryptedInput",
    "FheRelayerProtocol",
    "IdempotencyLedgerProtocol",
    "JobQueueProtocol",
    "LedgerSubmissionClientProtocol",
    "ProposalRepositoryProtocol",
    "ReservationResult",
    "SubmissionReceipt",
    "TransitionResult",
    "VoteRecordStoreProtocol",
]
