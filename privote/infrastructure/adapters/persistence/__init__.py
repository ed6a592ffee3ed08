"""PostgreSQL persistence adapters."""

from privote.infrastructure.adapters.persistence.postgres_proposal_repository import (
    PostgresProposalRepository,
)
from privote.infrastructure.adapters.persistence.postgres_vote_record_store import (
    PostgresVoteRecordStore,
)
from privote.infrastructure.adapters.persistence.schema import (
    SCHEMA_STATEMENTS,
    create_schema,
)

__all__: list[str] = [
    "SCHEMA_STATEMENTS",
    "PostgresProposalRepository",
    "PostgresVoteRecordStore",
    "create_schema",
]
