"""Configuration module for the Privote pipeline.

This module provides centralized configuration for pipeline components.

Available Configurations:
- QueueKindConfig: Per-kind queue retry, delay and retention settings
- WorkerPoolConfig: Worker concurrency limits and deadlines
- LedgerConfig: Ledger and relayer connection settings
"""

from privote.config.pipeline_config import (
    DEFAULT_SUBMISSION_QUEUE_CONFIG,
    DEFAULT_TALLY_QUEUE_CONFIG,
    DEFAULT_WORKER_POOL_CONFIG,
    TEST_SUBMISSION_QUEUE_CONFIG,
    TEST_TALLY_QUEUE_CONFIG,
    TEST_WORKER_POOL_CONFIG,
    LedgerConfig,
    QueueKindConfig,
    WorkerPoolConfig,
)

__all__ = [
    "LedgerConfig",
    "QueueKindConfig",
    "WorkerPoolConfig",
    "DEFAULT_SUBMISSION_QUEUE_CONFIG",
    "DEFAULT_TALLY_QUEUE_CONFIG",
    "DEFAULT_WORKER_POOL_CONFIG",
    "TEST_SUBMISSION_QUEUE_CONFIG",
    "TEST_TALLY_QUEUE_CONFIG",
    "TEST_WORKER_POOL_CONFIG",
]
