"""Prometheus metrics for the pipeline."""

from privote.infrastructure.monitoring.metrics import (
    METRICS_CONTENT_TYPE,
    PipelineMetrics,
    generate_metrics,
    get_pipeline_metrics,
    reset_pipeline_metrics,
)

__all__: list[str] = [
    "METRICS_CONTENT_TYPE",
    "PipelineMetrics",
    "generate_metrics",
    "get_pipeline_metrics",
    "reset_pipeline_metrics",
]
