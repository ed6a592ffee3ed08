"""Bootstrap wiring for the pipeline components.

Each collaborator is chosen once, at construction, from the environment:

- DATABASE_URL set: PostgreSQL vote record store and proposal repository,
  otherwise in-memory stubs (data does not persist)
- REDIS_URL set: Redis job queue, otherwise the in-memory queue (jobs
  only reach workers running in the same process)
- LEDGER_MODE=evm: JSON-RPC ledger client and HTTP relayer, otherwise the
  deterministic ledger and relayer stubs

A configured backend that cannot be built raises; the pipeline never
falls back to a stub when real infrastructure was requested.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from structlog import get_logger

from privote.application.ports.fhe_relayer import FheRelayerProtocol
from privote.application.ports.job_queue import JobQueueProtocol
from privote.application.ports.ledger_client import LedgerSubmissionClientProtocol
from privote.application.ports.proposal_repository import ProposalRepositoryProtocol
from privote.application.ports.vote_record_store import VoteRecordStoreProtocol
from privote.application.services.tally_service import TallyService
from privote.application.services.vote_submission_service import VoteSubmissionService
from privote.config.pipeline_config import (
    LedgerConfig,
    QueueKindConfig,
    WorkerPoolConfig,
)
from privote.domain.errors import QueueUnavailableError
from privote.domain.models.job import JobKind
from privote.infrastructure.monitoring.metrics import (
    PipelineMetrics,
    get_pipeline_metrics,
)
from privote.workers.submission_handler import SubmissionHandler
from privote.workers.tally_handler import TallyHandler

logger = get_logger()


def queue_configs_from_environment() -> dict[JobKind, QueueKindConfig]:
    return {
        JobKind.SUBMISSION: QueueKindConfig.submission_from_environment(),
        JobKind.TALLY: QueueKindConfig.tally_from_environment(),
    }


@dataclass
class PipelineComponents:
    """Wired collaborators and services of one pipeline process."""

    store: VoteRecordStoreProtocol
    proposals: ProposalRepositoryProtocol
    queue: JobQueueProtocol
    ledger: LedgerSubmissionClientProtocol
    relayer: FheRelayerProtocol | None
    ledger_config: LedgerConfig
    worker_config: WorkerPoolConfig
    metrics: PipelineMetrics
    submission_service: VoteSubmissionService = field(init=False)
    tally_service: TallyService = field(init=False)

    def __post_init__(self) -> None:
        self.submission_service = VoteSubmissionService(
            self.store, self.proposals, self.queue
        )
        self.tally_service = TallyService(self.proposals, self.queue, self.relayer)

    def submission_handler(self) -> SubmissionHandler:
        return SubmissionHandler(
            store=self.store,
            proposals=self.proposals,
            ledger=self.ledger,
            queue=self.queue,
            relayer=self.relayer,
            contract_address=self.ledger_config.voting_contract_address or "",
            confirmation_timeout_seconds=(
                self.ledger_config.confirmation_timeout_seconds
            ),
            relayer_timeout_seconds=self.ledger_config.relayer_timeout_seconds,
            metrics=self.metrics,
        )

    def tally_handler(self) -> TallyHandler:
        return TallyHandler(
            store=self.store,
            proposals=self.proposals,
            ledger=self.ledger,
            metrics=self.metrics,
        )

    async def close(self) -> None:
        """Release queue, ledger, relayer and database connections."""
        await self.queue.close()
        await self.ledger.close()
        if self.relayer is not None:
            await self.relayer.close()
        if os.environ.get("DATABASE_URL"):
            from privote.bootstrap.database import close_database_engine

            await close_database_engine()
        logger.info("pipeline_closed")


def create_persistence() -> tuple[VoteRecordStoreProtocol, ProposalRepositoryProtocol]:
    """Vote record store and proposal repository for this process."""
    if os.environ.get("DATABASE_URL"):
        from privote.bootstrap.database import get_session_factory
        from privote.infrastructure.adapters.persistence import (
            PostgresProposalRepository,
            PostgresVoteRecordStore,
        )

        session_factory = get_session_factory()
        logger.info("vote_record_store_initialized", store_type="PostgreSQL")
        return (
            PostgresVoteRecordStore(session_factory),
            PostgresProposalRepository(session_factory),
        )

    from privote.infrastructure.stubs import ProposalRepositoryStub, VoteRecordStoreStub

    logger.warning(
        "vote_record_store_initialized",
        store_type="InMemoryStub",
        message="DATABASE_URL not set - using in-memory stub (data will not persist)",
    )
    proposals = ProposalRepositoryStub()
    return VoteRecordStoreStub(proposals=proposals), proposals


async def create_job_queue(
    configs: dict[JobKind, QueueKindConfig] | None = None,
) -> JobQueueProtocol:
    """Job queue for this process.

    Raises:
        QueueUnavailableError: REDIS_URL is set but the server does not answer.
    """
    configs = configs or queue_configs_from_environment()
    redis_url = os.environ.get("REDIS_URL")
    if redis_url:
        from privote.infrastructure.adapters.queue import RedisJobQueue

        queue = RedisJobQueue.from_url(
            redis_url, configs=configs, prefix=os.environ.get("QUEUE_PREFIX", "privote")
        )
        if not await queue.ping():
            await queue.close()
            raise QueueUnavailableError("Redis did not answer PING")
        logger.info("job_queue_initialized", queue_type="Redis")
        return queue

    from privote.infrastructure.stubs import JobQueueStub

    logger.warning(
        "job_queue_initialized",
        queue_type="InMemoryStub",
        message="REDIS_URL not set - jobs are only visible to this process",
    )
    return JobQueueStub(configs=configs)


async def create_ledger(
    config: LedgerConfig,
) -> tuple[LedgerSubmissionClientProtocol, FheRelayerProtocol | None]:
    """Initialized ledger client and relayer for the configured mode."""
    if config.mode == "evm":
        from privote.infrastructure.adapters.ledger import EvmLedgerClient
        from privote.infrastructure.adapters.relayer import HttpRelayerClient

        ledger = await EvmLedgerClient.create(config)
        relayer = HttpRelayerClient(
            config.relayer_url,
            chain_id=config.chain_id,
            timeout=config.relayer_timeout_seconds,
        )
        logger.info("ledger_initialized", ledger_type="EVM", chain_id=config.chain_id)
        return ledger, relayer

    from privote.infrastructure.stubs import FheRelayerStub, LedgerClientStub

    logger.warning("ledger_initialized", ledger_type="Stub")
    return await LedgerClientStub().initialize(), FheRelayerStub()


async def build_pipeline(
    ledger_config: LedgerConfig | None = None,
    worker_config: WorkerPoolConfig | None = None,
    queue_configs: dict[JobKind, QueueKindConfig] | None = None,
) -> PipelineComponents:
    """Build every pipeline component from configuration and environment."""
    ledger_config = ledger_config or LedgerConfig.from_environment()
    worker_config = worker_config or WorkerPoolConfig.from_environment()
    store, proposals = create_persistence()
    queue = await create_job_queue(queue_configs)
    ledger, relayer = await create_ledger(ledger_config)
    return PipelineComponents(
        store=store,
        proposals=proposals,
        queue=queue,
        ledger=ledger,
        relayer=relayer,
        ledger_config=ledger_config,
        worker_config=worker_config,
        metrics=get_pipeline_metrics(),
    )
