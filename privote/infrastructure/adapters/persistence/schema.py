"""PostgreSQL schema for vote records and the consumed proposal state.

The uniqueness guarantees live here, not in application code:
- uq_vote_records_proposal_subject: one vote per subject per proposal
- uq_vote_records_idempotency_token: one record per client token
- ck_vote_records_status: the three lifecycle statuses
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from structlog import get_logger

logger = get_logger()

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS proposals (
        id UUID PRIMARY KEY,
        ledger_proposal_id BIGINT NOT NULL,
        starts_at TIMESTAMPTZ NOT NULL,
        ends_at TIMESTAMPTZ NOT NULL,
        closed BOOLEAN NOT NULL DEFAULT FALSE,
        vote_count INTEGER NOT NULL DEFAULT 0 CHECK (vote_count >= 0),
        encrypted_tally TEXT,
        tally_tx_ref TEXT,
        tally_job_id TEXT,
        CONSTRAINT ck_proposals_window CHECK (ends_at > starts_at)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vote_records (
        id UUID PRIMARY KEY,
        proposal_id UUID NOT NULL REFERENCES proposals (id),
        subject_id UUID NOT NULL,
        ciphertext_ref TEXT NOT NULL,
        proof_ref TEXT,
        weight INTEGER NOT NULL DEFAULT 1 CHECK (weight >= 0),
        status TEXT NOT NULL DEFAULT 'pending',
        idempotency_token TEXT,
        job_id TEXT,
        ledger_tx_ref TEXT,
        ledger_block_ref BIGINT,
        error_detail TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        confirmed_at TIMESTAMPTZ,
        failed_at TIMESTAMPTZ,
        CONSTRAINT ck_vote_records_status
            CHECK (status IN ('pending', 'confirmed', 'failed')),
        CONSTRAINT uq_vote_records_proposal_subject UNIQUE (proposal_id, subject_id)
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_vote_records_idempotency_token
        ON vote_records (idempotency_token)
        WHERE idempotency_token IS NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_vote_records_proposal_status
        ON vote_records (proposal_id, status)
    """,
)


async def create_schema(engine: AsyncEngine) -> None:
    """Create tables and indexes if they do not exist."""
    async with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))
    logger.info("database_schema_ensured", statements=len(SCHEMA_STATEMENTS))
