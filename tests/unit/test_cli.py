"""Tests for the privote CLI.

Commands run against in-memory collaborators: either the defaults chosen
by build_pipeline when no infrastructure is configured, or a prebuilt
pipeline injected in place of build_pipeline.
"""

import asyncio
import json
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from privote import cli
from privote.bootstrap.pipeline import PipelineComponents
from privote.cli import app
from privote.config.pipeline_config import TEST_WORKER_POOL_CONFIG, LedgerConfig
from privote.infrastructure.stubs import JobQueueStub, LedgerClientStub

runner = CliRunner()

HANDLE = "0x" + "ab" * 32


@pytest.fixture(autouse=True)
def _no_infrastructure(monkeypatch):
    """Commands must never reach real infrastructure from unit tests."""
    for name in (
        "DATABASE_URL",
        "REDIS_URL",
        "LEDGER_MODE",
        "VOTING_CONTRACT_ADDRESS",
        "PROJECT_PRIVATE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def injected(monkeypatch, store, proposals, relayer, metrics):
    """Replace build_pipeline with one sharing the test's store and proposals."""

    async def build_pipeline() -> PipelineComponents:
        return PipelineComponents(
            store=store,
            proposals=proposals,
            queue=JobQueueStub(),
            ledger=await LedgerClientStub().initialize(),
            relayer=relayer,
            ledger_config=LedgerConfig(),
            worker_config=TEST_WORKER_POOL_CONFIG,
            metrics=metrics,
        )

    monkeypatch.setattr(cli, "build_pipeline", build_pipeline)
    return store


class TestCLIVersion:
    """Tests for the version flag."""

    def test_cli_version_command(self, project_version):
        """Verify --version shows the version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"privote version {project_version}" in result.stdout

    def test_cli_version_short_flag(self):
        result = runner.invoke(app, ["-v"])

        assert result.exit_code == 0
        assert "privote version" in result.stdout


class TestCLIHelp:
    @pytest.mark.parametrize(
        "command",
        [
            "worker",
            "init-db",
            "submit-vote",
            "vote-status",
            "enqueue-tally",
            "job-status",
            "queue-stats",
            "tally",
            "decrypt-tally",
        ],
    )
    def test_cli_command_exists(self, command):
        """Verify every command is registered."""
        result = runner.invoke(app, [command, "--help"])

        assert result.exit_code == 0
        assert command in result.stdout


class TestCLISubmitVote:
    def test_cli_submit_vote_json(self, injected, open_proposal):
        """Verify a vote is recorded and its job id reported."""
        result = runner.invoke(
            app,
            ["submit-vote", str(open_proposal.id), str(uuid4()), HANDLE, "-o", "json"],
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "pending"
        assert data["job_id"] == f"vote-{data['vote_id']}"
        assert data["duplicate"] is False
        assert len(injected.records) == 1

    def test_cli_submit_vote_then_status(self, injected, open_proposal):
        submitted = runner.invoke(
            app,
            ["submit-vote", str(open_proposal.id), str(uuid4()), HANDLE, "-o", "json"],
        )
        vote_id = json.loads(submitted.stdout)["vote_id"]

        result = runner.invoke(app, ["vote-status", vote_id, "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["vote_id"] == vote_id
        assert data["status"] == "pending"
        assert data["attempts"] == 0

    def test_cli_submit_vote_duplicate_subject(self, injected, open_proposal):
        """Verify a second vote by the same subject exits with an error."""
        subject = str(uuid4())
        args = ["submit-vote", str(open_proposal.id), subject, HANDLE]
        runner.invoke(app, args)

        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_cli_submit_vote_unknown_proposal(self):
        result = runner.invoke(app, ["submit-vote", str(uuid4()), str(uuid4()), HANDLE])

        assert result.exit_code == 1

    def test_cli_submit_vote_invalid_uuid(self):
        """Verify a malformed id is a usage error."""
        result = runner.invoke(app, ["submit-vote", "not-a-uuid", str(uuid4()), HANDLE])

        assert result.exit_code == 2


class TestCLIStatus:
    def test_cli_vote_status_unknown(self):
        result = runner.invoke(app, ["vote-status", str(uuid4())])

        assert result.exit_code == 1

    def test_cli_job_status_unknown(self):
        """Verify an unknown job id exits with code 1."""
        result = runner.invoke(app, ["job-status", "vote-missing"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_cli_queue_stats_text(self, injected):
        result = runner.invoke(app, ["queue-stats"])

        assert result.exit_code == 0
        assert "submission" in result.stdout
        assert "tally" in result.stdout

    def test_cli_queue_stats_json(self, injected):
        result = runner.invoke(app, ["queue-stats", "-o", "json"])

        assert result.exit_code == 0
        stats = json.loads(result.stdout)
        assert set(stats) == {"submission", "tally"}
        assert stats["submission"]["waiting"] == 0


class TestCLITally:
    def test_cli_enqueue_tally(self, injected, proposals, open_proposal):
        proposals.close(open_proposal.id)

        result = runner.invoke(app, ["enqueue-tally", str(open_proposal.id)])

        assert result.exit_code == 0
        assert "Tally job enqueued" in result.stdout

    def test_cli_tally_not_ready(self, injected, open_proposal):
        result = runner.invoke(app, ["tally", str(open_proposal.id)])

        assert result.exit_code == 1

    def test_cli_tally_and_decrypt(self, injected, proposals, relayer, open_proposal):
        """Verify a stored tally is shown and publicly decrypted."""
        proposals.close(open_proposal.id)
        for _ in range(3):
            proposals.increment_vote_count(open_proposal.id)
        asyncio.run(proposals.record_tally(open_proposal.id, "0xtally", "0xtx"))
        relayer.set_clear_value("0xtally", 2)

        shown = runner.invoke(app, ["tally", str(open_proposal.id), "-o", "json"])
        decrypted = runner.invoke(
            app, ["decrypt-tally", str(open_proposal.id), "-o", "json"]
        )

        assert shown.exit_code == 0
        assert json.loads(shown.stdout)["encrypted_tally"] == "0xtally"
        assert decrypted.exit_code == 0
        assert json.loads(decrypted.stdout)["clear_value"] == 2


class TestCLIConfiguration:
    def test_cli_evm_mode_without_settings(self, monkeypatch):
        """Verify missing ledger settings are a configuration error."""
        monkeypatch.setenv("LEDGER_MODE", "evm")

        result = runner.invoke(app, ["queue-stats"])

        assert result.exit_code == 2
        assert "Configuration error" in result.output

    def test_cli_invalid_ledger_mode(self, monkeypatch):
        monkeypatch.setenv("LEDGER_MODE", "solana")

        result = runner.invoke(app, ["queue-stats"])

        assert result.exit_code == 2
