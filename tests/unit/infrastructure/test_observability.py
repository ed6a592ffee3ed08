"""Unit tests for correlation context, structlog configuration and metrics."""

import io
import json

import pytest
import structlog
from prometheus_client import CollectorRegistry

from privote.infrastructure.monitoring.metrics import (
    PipelineMetrics,
    generate_metrics,
    get_pipeline_metrics,
    reset_pipeline_metrics,
)
from privote.infrastructure.observability import (
    configure_structlog,
    correlation_id_processor,
    get_correlation_id,
    job_log_context,
    set_correlation_id,
)


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestJobLogContext:
    """Tests for job-scoped log context."""

    def test_binds_fields_and_correlation(self) -> None:
        with job_log_context(job_id="vote-1", vote_id="v", proposal_id=None):
            bound = structlog.contextvars.get_contextvars()
            assert bound["job_id"] == "vote-1"
            assert bound["vote_id"] == "v"
            assert "proposal_id" not in bound
            assert get_correlation_id() == "vote-1"

        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_explicit_correlation_id_wins(self) -> None:
        with job_log_context(job_id="vote-1", correlation_id="req-9"):
            assert get_correlation_id() == "req-9"
            assert "correlation_id" not in structlog.contextvars.get_contextvars()

    def test_restores_outer_correlation_id(self) -> None:
        set_correlation_id("outer")

        with job_log_context(job_id="inner"):
            pass

        assert get_correlation_id() == "outer"
        set_correlation_id("")

    def test_processor_adds_correlation_id(self) -> None:
        set_correlation_id("abc")
        try:
            event = correlation_id_processor(None, "info", {"event": "x"})
        finally:
            set_correlation_id("")

        assert event["correlation_id"] == "abc"

    def test_processor_skips_empty_id(self) -> None:
        assert "correlation_id" not in correlation_id_processor(None, "info", {})


class TestConfigureStructlog:
    def test_production_renders_json_with_job_context(self, reset_structlog) -> None:
        stream = io.StringIO()
        configure_structlog(environment="production", level="DEBUG", stream=stream)

        with job_log_context(job_id="vote-1", vote_id="v"):
            structlog.get_logger().info("vote_confirmed", tx_ref="0xabc")

        entry = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert entry["event"] == "vote_confirmed"
        assert entry["level"] == "info"
        assert entry["job_id"] == "vote-1"
        assert entry["correlation_id"] == "vote-1"
        assert entry["tx_ref"] == "0xabc"

    def test_level_filters(self, reset_structlog) -> None:
        stream = io.StringIO()
        configure_structlog(environment="production", level="WARNING", stream=stream)

        structlog.get_logger().info("quiet")

        assert stream.getvalue() == ""


class TestPipelineMetrics:
    """Tests for Prometheus metrics."""

    def test_records_job_counters(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "test")
        monkeypatch.setenv("SERVICE_NAME", "svc")
        registry = CollectorRegistry()
        metrics = PipelineMetrics(registry=registry)

        metrics.record_job_started("submission")
        metrics.record_job_completed("submission", 0.5)
        metrics.record_job_failed("submission", "already_voted", 0.1)
        metrics.record_ledger_failure("permanent", "already_voted")

        labels = {"service": "svc", "environment": "test"}
        assert (
            registry.get_sample_value(
                "privote_jobs_completed_total", {**labels, "kind": "submission"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "privote_jobs_failed_total",
                {**labels, "kind": "submission", "reason": "already_voted"},
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "privote_ledger_failures_total",
                {**labels, "failure_class": "permanent", "reason": "already_voted"},
            )
            == 1.0
        )

    def test_queue_depth_gauge(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "test")
        monkeypatch.setenv("SERVICE_NAME", "svc")
        metrics = PipelineMetrics()

        metrics.set_queue_depth({"submission": {"waiting": 4, "failed": 1}})

        value = metrics.get_registry().get_sample_value(
            "privote_queue_depth",
            {
                "service": "svc",
                "environment": "test",
                "kind": "submission",
                "state": "waiting",
            },
        )
        assert value == 4.0

    def test_singleton_and_exposition(self) -> None:
        first = get_pipeline_metrics()
        first.record_job_started("tally")

        assert get_pipeline_metrics() is first
        assert b"privote_jobs_started_total" in generate_metrics()

        reset_pipeline_metrics()
        assert get_pipeline_metrics() is not first
