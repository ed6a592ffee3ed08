"""
Integration test configuration with testcontainers.

Session-scoped containers:
- PostgreSQL 16 (vote records and proposals)
- Redis 7 (job queue)

State is reset per test: tables are truncated and the Redis database is
flushed, so tests can share one container of each kind.

Usage:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_example(vote_store: PostgresVoteRecordStore) -> None:
        ...

Note: Docker must be running for these fixtures to work.
"""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from privote.config.pipeline_config import (
    TEST_SUBMISSION_QUEUE_CONFIG,
    TEST_TALLY_QUEUE_CONFIG,
)
from privote.domain.models.job import JobKind
from privote.infrastructure.adapters.persistence import (
    PostgresProposalRepository,
    PostgresVoteRecordStore,
    create_schema,
)
from privote.infrastructure.adapters.queue import RedisJobQueue


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """Session-scoped PostgreSQL 16 container."""
    with PostgresContainer("postgres:16-alpine") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    """Session-scoped Redis 7 container."""
    with RedisContainer("redis:7-alpine") as redis_cont:
        yield redis_cont


@pytest.fixture(scope="session")
def postgres_async_url(postgres_container: PostgresContainer) -> str:
    """asyncpg URL for the container (testcontainers returns a psycopg2 URL)."""
    sync_url = postgres_container.get_connection_url()
    async_url: str = sync_url.replace(
        "postgresql+psycopg2://", "postgresql+asyncpg://"
    ).replace("postgresql://", "postgresql+asyncpg://")
    return async_url


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


# Function-scoped fixtures for test isolation
@pytest.fixture
async def db_engine(postgres_async_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine on a schema with empty tables."""
    engine = create_async_engine(postgres_async_url, echo=False)
    await create_schema(engine)
    async with engine.begin() as conn:
        await conn.execute(text("TRUNCATE vote_records, proposals"))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def vote_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> PostgresVoteRecordStore:
    return PostgresVoteRecordStore(session_factory)


@pytest.fixture
def proposal_repository(
    session_factory: async_sessionmaker[AsyncSession],
) -> PostgresProposalRepository:
    return PostgresProposalRepository(session_factory)


@pytest.fixture
def insert_proposal(session_factory: async_sessionmaker[AsyncSession]):
    """Insert an open proposal row (proposals are owned upstream)."""

    async def _insert(ledger_proposal_id: int = 7, closed: bool = False) -> UUID:
        proposal_id = uuid4()
        now = datetime.now(timezone.utc)
        async with session_factory() as session, session.begin():
            await session.execute(
                text("""
                    INSERT INTO proposals (id, ledger_proposal_id, starts_at, ends_at, closed)
                    VALUES (:id, :ledger_proposal_id, :starts_at, :ends_at, :closed)
                """),
                {
                    "id": proposal_id,
                    "ledger_proposal_id": ledger_proposal_id,
                    "starts_at": now - timedelta(minutes=5),
                    "ends_at": now + timedelta(hours=1),
                    "closed": closed,
                },
            )
        return proposal_id

    return _insert


@pytest.fixture
async def redis_queue(redis_url: str) -> AsyncGenerator[RedisJobQueue, None]:
    """Redis job queue on a flushed database, with zero backoff."""
    client = aioredis.from_url(redis_url, decode_responses=True)
    await client.flushdb()
    queue = RedisJobQueue(
        client,
        configs={
            JobKind.SUBMISSION: TEST_SUBMISSION_QUEUE_CONFIG,
            JobKind.TALLY: TEST_TALLY_QUEUE_CONFIG,
        },
        poll_interval_seconds=0.01,
    )
    yield queue
    await client.flushdb()
    await queue.close()
