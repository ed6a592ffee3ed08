"""
Pytest configuration and shared fixtures for Privote tests.

Testing Standards:
- All async tests use pytest.mark.asyncio (auto mode enabled in pyproject.toml)
- Stubs from privote.infrastructure.stubs stand in for PostgreSQL, Redis,
  the ledger and the relayer in unit tests
- Unit tests go in tests/unit/
- Integration tests go in tests/integration/ (require Docker)
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from privote.config.pipeline_config import (
    TEST_SUBMISSION_QUEUE_CONFIG,
    TEST_TALLY_QUEUE_CONFIG,
)
from privote.domain.models.job import JobKind
from privote.domain.models.proposal import Proposal
from privote.infrastructure.monitoring.metrics import (
    PipelineMetrics,
    reset_pipeline_metrics,
)
from privote.infrastructure.stubs import (
    FheRelayerStub,
    JobQueueStub,
    LedgerClientStub,
    ProposalRepositoryStub,
    VoteRecordStoreStub,
)


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def project_version() -> str:
    """Provide the current project version for tests."""
    from privote import __version__

    return __version__


@pytest.fixture(autouse=True)
def _reset_metrics_singleton():
    """Each test starts from a fresh metrics singleton."""
    reset_pipeline_metrics()
    yield
    reset_pipeline_metrics()


# =============================================================================
# Proposal factory
# =============================================================================


def make_proposal(
    ledger_proposal_id: int = 7,
    open_for: timedelta = timedelta(hours=1),
    started_ago: timedelta = timedelta(minutes=5),
    **overrides,
) -> Proposal:
    """Build a proposal whose voting window contains 'now' by default."""
    now = datetime.now(timezone.utc)
    fields = {
        "id": uuid4(),
        "ledger_proposal_id": ledger_proposal_id,
        "starts_at": now - started_ago,
        "ends_at": now - started_ago + open_for,
    }
    fields.update(overrides)
    return Proposal(**fields)


@pytest.fixture
def proposal_factory():
    return make_proposal


# =============================================================================
# Stub collaborators
# =============================================================================


@pytest.fixture
def proposals() -> ProposalRepositoryStub:
    return ProposalRepositoryStub()


@pytest.fixture
def store(proposals: ProposalRepositoryStub) -> VoteRecordStoreStub:
    return VoteRecordStoreStub(proposals)


@pytest.fixture
def queue() -> JobQueueStub:
    return JobQueueStub(
        configs={
            JobKind.SUBMISSION: TEST_SUBMISSION_QUEUE_CONFIG,
            JobKind.TALLY: TEST_TALLY_QUEUE_CONFIG,
        }
    )


@pytest.fixture
async def ledger() -> LedgerClientStub:
    return await LedgerClientStub().initialize()


@pytest.fixture
def relayer() -> FheRelayerStub:
    return FheRelayerStub()


@pytest.fixture
def metrics() -> PipelineMetrics:
    """Metrics on an isolated registry."""
    return PipelineMetrics()


@pytest.fixture
def open_proposal(proposals: ProposalRepositoryStub) -> Proposal:
    proposal = make_proposal()
    proposals.add(proposal)
    return proposal
