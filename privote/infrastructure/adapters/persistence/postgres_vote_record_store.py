"""PostgreSQL vote record store.

Atomicity comes from the database:
- create_vote is a single INSERT ... ON CONFLICT DO NOTHING against the
  subject and token unique indexes
- terminal transitions are UPDATE ... WHERE status = 'pending' RETURNING
- the confirm transition and the proposal counter increment commit in
  the same transaction
"""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from privote.application.ports.idempotency_ledger import ReservationResult
from privote.application.ports.vote_record_store import TransitionResult
from privote.domain.errors import DuplicateVoteError
from privote.domain.models.vote_record import VoteRecord, VoteStatus

logger = get_logger()

_COLUMNS = """
    id, proposal_id, subject_id, ciphertext_ref, proof_ref, weight, status,
    idempotency_token, job_id, ledger_tx_ref, ledger_block_ref, error_detail,
    attempts, created_at, confirmed_at, failed_at
"""


def _row_to_record(row: Any) -> VoteRecord:
    data = row._mapping
    return VoteRecord(
        id=data["id"],
        proposal_id=data["proposal_id"],
        subject_id=data["subject_id"],
        ciphertext_ref=data["ciphertext_ref"],
        proof_ref=data["proof_ref"],
        weight=data["weight"],
        status=VoteStatus(data["status"]),
        idempotency_token=data["idempotency_token"],
        job_id=data["job_id"],
        ledger_tx_ref=data["ledger_tx_ref"],
        ledger_block_ref=data["ledger_block_ref"],
        error_detail=data["error_detail"],
        attempts=data["attempts"],
        created_at=data["created_at"],
        confirmed_at=data["confirmed_at"],
        failed_at=data["failed_at"],
    )


class PostgresVoteRecordStore:
    """VoteRecordStoreProtocol backed by PostgreSQL.

    Attributes:
        _session_factory: SQLAlchemy async session factory for DB access.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def check_and_reserve(self, token: str | None) -> ReservationResult:
        if token is None:
            return ReservationResult.new()
        existing = await self.get_by_token(token)
        if existing is None:
            return ReservationResult.new()
        return ReservationResult.existing(existing)

    async def create_vote(
        self,
        proposal_id: UUID,
        subject_id: UUID,
        ciphertext_ref: str,
        proof_ref: str | None,
        idempotency_token: str | None,
        weight: int = 1,
    ) -> ReservationResult:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                text(f"""
                    INSERT INTO vote_records (
                        id, proposal_id, subject_id, ciphertext_ref, proof_ref,
                        weight, status, idempotency_token
                    )
                    VALUES (
                        :id, :proposal_id, :subject_id, :ciphertext_ref, :proof_ref,
                        :weight, 'pending', :idempotency_token
                    )
                    ON CONFLICT DO NOTHING
                    RETURNING {_COLUMNS}
                """),
                {
                    "id": uuid4(),
                    "proposal_id": proposal_id,
                    "subject_id": subject_id,
                    "ciphertext_ref": ciphertext_ref,
                    "proof_ref": proof_ref,
                    "weight": weight,
                    "idempotency_token": idempotency_token,
                },
            )
            row = result.fetchone()
            if row is not None:
                return ReservationResult.new(_row_to_record(row))

            if idempotency_token is not None:
                existing = await self._select_one(
                    session, "idempotency_token = :token", {"token": idempotency_token}
                )
                if existing is not None:
                    return ReservationResult.existing(existing)

            existing = await self._select_one(
                session,
                "proposal_id = :proposal_id AND subject_id = :subject_id",
                {"proposal_id": proposal_id, "subject_id": subject_id},
            )
        logger.info(
            "vote_record_duplicate",
            proposal_id=str(proposal_id),
            existing_vote_id=str(existing.id) if existing else None,
        )
        raise DuplicateVoteError(
            proposal_id, subject_id, existing.id if existing else None
        )

    async def attach_job(self, vote_id: UUID, job_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                text("UPDATE vote_records SET job_id = :job_id WHERE id = :id"),
                {"job_id": job_id, "id": vote_id},
            )

    async def get(self, vote_id: UUID) -> VoteRecord | None:
        async with self._session_factory() as session:
            return await self._select_one(session, "id = :id", {"id": vote_id})

    async def get_by_token(self, token: str) -> VoteRecord | None:
        async with self._session_factory() as session:
            return await self._select_one(
                session, "idempotency_token = :token", {"token": token}
            )

    async def find_by_subject(
        self, proposal_id: UUID, subject_id: UUID
    ) -> VoteRecord | None:
        async with self._session_factory() as session:
            return await self._select_one(
                session,
                "proposal_id = :proposal_id AND subject_id = :subject_id",
                {"proposal_id": proposal_id, "subject_id": subject_id},
            )

    async def list_confirmed(self, proposal_id: UUID) -> list[VoteRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                text(f"""
                    SELECT {_COLUMNS}
                    FROM vote_records
                    WHERE proposal_id = :proposal_id AND status = 'confirmed'
                    ORDER BY created_at, id
                """),
                {"proposal_id": proposal_id},
            )
            return [_row_to_record(row) for row in result.fetchall()]

    async def count_by_status(self, proposal_id: UUID, status: VoteStatus) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT COUNT(*)
                    FROM vote_records
                    WHERE proposal_id = :proposal_id AND status = :status
                """),
                {"proposal_id": proposal_id, "status": status.value},
            )
            return result.scalar() or 0

    async def delete_pending(self, vote_id: UUID) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                text("DELETE FROM vote_records WHERE id = :id AND status = 'pending'"),
                {"id": vote_id},
            )
            return (result.rowcount or 0) > 0

    async def transition_to_confirmed(
        self,
        vote_id: UUID,
        ledger_tx_ref: str,
        ledger_block_ref: int | None,
        attempts: int,
    ) -> TransitionResult:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                text(f"""
                    UPDATE vote_records
                    SET status = 'confirmed',
                        ledger_tx_ref = :ledger_tx_ref,
                        ledger_block_ref = :ledger_block_ref,
                        attempts = :attempts,
                        confirmed_at = now()
                    WHERE id = :id AND status = 'pending'
                    RETURNING {_COLUMNS}
                """),
                {
                    "id": vote_id,
                    "ledger_tx_ref": ledger_tx_ref,
                    "ledger_block_ref": ledger_block_ref,
                    "attempts": attempts,
                },
            )
            row = result.fetchone()
            if row is not None:
                record = _row_to_record(row)
                await session.execute(
                    text("""
                        UPDATE proposals
                        SET vote_count = vote_count + 1
                        WHERE id = :proposal_id
                    """),
                    {"proposal_id": record.proposal_id},
                )
                return TransitionResult(applied=True, record=record)

            current = await self._select_one(session, "id = :id", {"id": vote_id})
        return self._no_op(current, VoteStatus.CONFIRMED)

    async def transition_to_failed(
        self,
        vote_id: UUID,
        error_detail: str,
        attempts: int,
    ) -> TransitionResult:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                text(f"""
                    UPDATE vote_records
                    SET status = 'failed',
                        error_detail = :error_detail,
                        attempts = :attempts,
                        failed_at = now()
                    WHERE id = :id AND status = 'pending'
                    RETURNING {_COLUMNS}
                """),
                {"id": vote_id, "error_detail": error_detail, "attempts": attempts},
            )
            row = result.fetchone()
            if row is not None:
                return TransitionResult(applied=True, record=_row_to_record(row))
            current = await self._select_one(session, "id = :id", {"id": vote_id})
        return self._no_op(current, VoteStatus.FAILED)

    @staticmethod
    def _no_op(current: VoteRecord | None, target: VoteStatus) -> TransitionResult:
        if current is None:
            return TransitionResult(applied=False, record=None)
        conflict = current.status is not target
        if conflict:
            logger.warning(
                "vote_transition_conflict",
                vote_id=str(current.id),
                current=current.status.value,
                requested=target.value,
            )
        return TransitionResult(applied=False, record=current, conflict=conflict)

    @staticmethod
    async def _select_one(
        session: AsyncSession, where: str, params: dict[str, Any]
    ) -> VoteRecord | None:
        result = await session.execute(
            text(f"SELECT {_COLUMNS} FROM vote_records WHERE {where}"), params
        )
        row = result.fetchone()
        return _row_to_record(row) if row is not None else None
