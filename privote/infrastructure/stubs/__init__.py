"""Infrastructure stubs for development and testing.

Available stubs:
- VoteRecordStoreStub: In-memory vote records with unique constraints and CAS
- ProposalRepositoryStub: In-memory proposals with the tally CAS
- JobQueueStub: In-memory queue with priority, backoff, leases and retention
- LedgerClientStub: Deterministic, scriptable ledger
- FheRelayerStub: Deterministic input registration and public decryption

WARNING: These stubs are NOT for production use.
Production implementations are in privote/infrastructure/adapters/.
"""

from privote.infrastructure.stubs.fhe_relayer_stub import FheRelayerStub
from privote.infrastructure.stubs.job_queue_stub import JobQueueStub
from privote.infrastructure.stubs.ledger_client_stub import (
    STUB_SUBMITTER_ADDRESS,
    LedgerClientStub,
    SentVote,
)
from privote.infrastructure.stubs.proposal_repository_stub import (
    ProposalRepositoryStub,
)
from privote.infrastructure.stubs.vote_record_store_stub import VoteRecordStoreStub

__all__: list[str] = [
    "STUB_SUBMITTER_ADDRESS",
    "FheRelayerStub",
    "JobQueueStub",
    "LedgerClientStub",
    "ProposalRepositoryStub",
    "SentVote",
    "VoteRecordStoreStub",
]
