"""Prometheus metrics for the vote pipeline.

Operational metrics only: job throughput and latency per kind, ledger
failures by class, and queue depth. Vote contents and subject identities
never appear in labels.

Labels: service, environment, plus kind/state/outcome where relevant.
"""

import os
import threading

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Content type for Prometheus metrics endpoint
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

# Thread lock for singleton initialization
_metrics_lock = threading.Lock()

# Handler duration buckets (50ms to 5min); ledger confirmations are slow
HANDLER_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


class PipelineMetrics:
    """Collects and manages pipeline Prometheus metrics.

    Attributes:
        jobs_started_total: Counter of job attempts started per kind.
        jobs_completed_total: Counter of jobs completed per kind.
        jobs_failed_total: Counter of jobs failed for good per kind.
        jobs_retried_total: Counter of attempts rescheduled per kind.
        handler_duration_seconds: Histogram of attempt duration per kind/outcome.
        ledger_failures_total: Counter of ledger failures per class/reason.
        queue_depth: Gauge of jobs per kind/state.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize pipeline metrics.

        Args:
            registry: Optional custom registry for testing isolation.
        """
        self._registry = registry or CollectorRegistry()
        self._environment = os.environ.get("ENVIRONMENT", "development")
        self._service_name = os.environ.get("SERVICE_NAME", "privote-worker")

        self.jobs_started_total = Counter(
            name="privote_jobs_started_total",
            documentation="Total job attempts started",
            labelnames=["service", "environment", "kind"],
            registry=self._registry,
        )

        self.jobs_completed_total = Counter(
            name="privote_jobs_completed_total",
            documentation="Total jobs completed",
            labelnames=["service", "environment", "kind"],
            registry=self._registry,
        )

        self.jobs_failed_total = Counter(
            name="privote_jobs_failed_total",
            documentation="Total jobs failed permanently",
            labelnames=["service", "environment", "kind", "reason"],
            registry=self._registry,
        )

        self.jobs_retried_total = Counter(
            name="privote_jobs_retried_total",
            documentation="Total job attempts rescheduled with backoff",
            labelnames=["service", "environment", "kind"],
            registry=self._registry,
        )

        self.handler_duration_seconds = Histogram(
            name="privote_handler_duration_seconds",
            documentation="Job handler attempt duration in seconds",
            labelnames=["service", "environment", "kind", "outcome"],
            buckets=HANDLER_DURATION_BUCKETS,
            registry=self._registry,
        )

        self.ledger_failures_total = Counter(
            name="privote_ledger_failures_total",
            documentation="Ledger call failures by failure class",
            labelnames=["service", "environment", "failure_class", "reason"],
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            name="privote_queue_depth",
            documentation="Jobs per kind and state",
            labelnames=["service", "environment", "kind", "state"],
            registry=self._registry,
        )

    def _labels(self) -> dict[str, str]:
        return {"service": self._service_name, "environment": self._environment}

    def record_job_started(self, kind: str) -> None:
        self.jobs_started_total.labels(**self._labels(), kind=kind).inc()

    def record_job_completed(self, kind: str, duration: float) -> None:
        """Record a successful attempt.

        Args:
            kind: Job kind value.
            duration: Attempt duration in seconds.
        """
        self.jobs_completed_total.labels(**self._labels(), kind=kind).inc()
        self.handler_duration_seconds.labels(
            **self._labels(), kind=kind, outcome="success"
        ).observe(duration)

    def record_job_retried(self, kind: str, duration: float) -> None:
        self.jobs_retried_total.labels(**self._labels(), kind=kind).inc()
        self.handler_duration_seconds.labels(
            **self._labels(), kind=kind, outcome="retry"
        ).observe(duration)

    def record_job_failed(self, kind: str, reason: str, duration: float) -> None:
        """Record an attempt that left the job FAILED.

        Args:
            kind: Job kind value.
            reason: Short failure reason (kept low-cardinality by callers).
            duration: Attempt duration in seconds.
        """
        self.jobs_failed_total.labels(**self._labels(), kind=kind, reason=reason).inc()
        self.handler_duration_seconds.labels(
            **self._labels(), kind=kind, outcome="failure"
        ).observe(duration)

    def record_ledger_failure(self, failure_class: str, reason: str) -> None:
        self.ledger_failures_total.labels(
            **self._labels(), failure_class=failure_class, reason=reason
        ).inc()

    def set_queue_depth(self, stats: dict[str, dict[str, int]]) -> None:
        """Update queue depth gauges from JobQueueProtocol.stats() output."""
        for kind, states in stats.items():
            for state, count in states.items():
                self.queue_depth.labels(**self._labels(), kind=kind, state=state).set(
                    count
                )

    def get_registry(self) -> CollectorRegistry:
        return self._registry


# Singleton instance
_pipeline_metrics: PipelineMetrics | None = None


def get_pipeline_metrics() -> PipelineMetrics:
    """Get the singleton PipelineMetrics instance (thread-safe).

    Uses double-checked locking for lazy initialization.
    """
    global _pipeline_metrics
    if _pipeline_metrics is None:
        with _metrics_lock:
            if _pipeline_metrics is None:
                _pipeline_metrics = PipelineMetrics()
    return _pipeline_metrics


def generate_metrics() -> bytes:
    """Generate Prometheus metrics in exposition format."""
    return generate_latest(get_pipeline_metrics().get_registry())


def reset_pipeline_metrics() -> None:
    """Reset the singleton (for testing only)."""
    global _pipeline_metrics
    with _metrics_lock:
        _pipeline_metrics = None
