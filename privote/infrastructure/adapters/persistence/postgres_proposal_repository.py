"""PostgreSQL proposal repository (pipeline-owned columns only)."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from privote.domain.models.proposal import Proposal

logger = get_logger()


def _row_to_proposal(row: Any) -> Proposal:
    data = row._mapping
    return Proposal(
        id=data["id"],
        ledger_proposal_id=data["ledger_proposal_id"],
        starts_at=data["starts_at"],
        ends_at=data["ends_at"],
        closed=data["closed"],
        vote_count=data["vote_count"],
        encrypted_tally=data["encrypted_tally"],
        tally_tx_ref=data["tally_tx_ref"],
        tally_job_id=data["tally_job_id"],
    )


class PostgresProposalRepository:
    """ProposalRepositoryProtocol backed by PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, proposal_id: UUID) -> Proposal | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT id, ledger_proposal_id, starts_at, ends_at, closed,
                           vote_count, encrypted_tally, tally_tx_ref, tally_job_id
                    FROM proposals
                    WHERE id = :id
                """),
                {"id": proposal_id},
            )
            row = result.fetchone()
            return _row_to_proposal(row) if row is not None else None

    async def set_tally_job(self, proposal_id: UUID, job_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                text("UPDATE proposals SET tally_job_id = :job_id WHERE id = :id"),
                {"job_id": job_id, "id": proposal_id},
            )

    async def record_tally(
        self,
        proposal_id: UUID,
        encrypted_tally: str,
        tally_tx_ref: str | None,
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                text("""
                    UPDATE proposals
                    SET encrypted_tally = :encrypted_tally,
                        tally_tx_ref = :tally_tx_ref
                    WHERE id = :id AND encrypted_tally IS NULL
                """),
                {
                    "id": proposal_id,
                    "encrypted_tally": encrypted_tally,
                    "tally_tx_ref": tally_tx_ref,
                },
            )
            stored = (result.rowcount or 0) == 1
        logger.info("tally_persisted", proposal_id=str(proposal_id), stored=stored)
        return stored
