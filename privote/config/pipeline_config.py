"""Pipeline configuration for queues, worker pools and the ledger.

This module defines configuration for the submission and tally queues,
their worker pools and the ledger/relayer collaborators, with environment
variable overrides for production tuning.

Environment Variables (Submission queue):
- SUBMISSION_MAX_ATTEMPTS: Attempts before a vote fails (default: 3)
- SUBMISSION_BACKOFF_BASE: Base retry delay in seconds (default: 2.0)
- SUBMISSION_BACKOFF_MAX: Maximum retry delay in seconds (default: 60.0)
- SUBMISSION_LEASE_SECONDS: Redelivery lease in seconds (default: 180)

Environment Variables (Tally queue):
- TALLY_MAX_ATTEMPTS: Attempts before a tally job fails (default: 2)
- TALLY_BACKOFF_BASE: Base retry delay in seconds (default: 5.0)
- TALLY_BACKOFF_MAX: Maximum retry delay in seconds (default: 300.0)
- TALLY_SETTLE_DELAY: Initial delay to let trailing votes settle (default: 5.0)
- TALLY_LEASE_SECONDS: Redelivery lease in seconds (default: 300)

Environment Variables (Workers):
- SUBMISSION_WORKERS: Concurrent submission slots (default: 5)
- TALLY_WORKERS: Concurrent tally slots (default: 2)
- SUBMISSION_RATE_PER_SECOND: Max submission job starts per second (default: 10)
- WORKER_HANDLER_TIMEOUT: Hard deadline per job attempt in seconds (default: 150)
- WORKER_POLL_TIMEOUT: Dequeue poll timeout in seconds (default: 1.0)

Environment Variables (Ledger):
- LEDGER_MODE: "evm" for the real chain, "stub" for the in-memory double
- NETWORK_RPC_URL, RELAYER_URL, CHAIN_ID, VOTING_CONTRACT_ADDRESS,
  PROJECT_PRIVATE_KEY
- LEDGER_RPC_TIMEOUT: Per-RPC timeout in seconds (default: 15.0)
- LEDGER_CONFIRMATION_TIMEOUT: Inclusion wait in seconds (default: 120.0)
- LEDGER_POLL_INTERVAL: Receipt polling interval in seconds (default: 2.0)
- RELAYER_TIMEOUT: Relayer call timeout in seconds (default: 30.0)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from privote.domain.models.job import BackoffPolicy, JobKind


def _get_int_env(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Args:
        key: Environment variable name.
        default: Default value if not set or invalid.

    Returns:
        Parsed integer value or default.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(key: str, default: float) -> float:
    """Get float environment variable with default.

    Args:
        key: Environment variable name.
        default: Default value if not set or invalid.

    Returns:
        Parsed float value or default.
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_str_env(key: str, default: str | None = None) -> str | None:
    value = os.environ.get(key)
    if value is None or value.strip() == "":
        return default
    return value.strip()


@dataclass(frozen=True)
class QueueKindConfig:
    """Queue behavior for one job kind.

    Attributes:
        kind: The job kind this config applies to.
        max_attempts: Attempts before the job fails permanently.
        backoff_base_seconds: Exponential backoff base delay.
        backoff_max_seconds: Backoff cap.
        priority: Default priority (lower runs first).
        initial_delay_seconds: Mandatory delay after enqueue.
        keep_completed: Completed jobs retained for status queries.
        keep_failed: Failed jobs retained for status queries.
        retention_seconds: Age after which finished jobs may be collected.
        lease_seconds: Time an active job may run before redelivery.
    """

    kind: JobKind
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 60.0
    priority: int = 1
    initial_delay_seconds: float = 0.0
    keep_completed: int = 100
    keep_failed: int = 500
    retention_seconds: float = 86_400.0
    lease_seconds: float = 180.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {self.max_attempts}")
        if self.backoff_base_seconds < 0:
            raise ValueError(
                f"backoff_base_seconds must be non-negative, got {self.backoff_base_seconds}"
            )
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError(
                f"backoff_max_seconds ({self.backoff_max_seconds}) must be >= "
                f"backoff_base_seconds ({self.backoff_base_seconds})"
            )
        if self.initial_delay_seconds < 0:
            raise ValueError(
                f"initial_delay_seconds must be non-negative, got {self.initial_delay_seconds}"
            )
        if self.keep_completed < 0 or self.keep_failed < 0:
            raise ValueError("keep_completed and keep_failed must be non-negative")
        if self.lease_seconds <= 0:
            raise ValueError(f"lease_seconds must be positive, got {self.lease_seconds}")

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay_seconds=self.backoff_base_seconds,
            max_delay_seconds=self.backoff_max_seconds,
        )

    @classmethod
    def submission_from_environment(cls) -> QueueKindConfig:
        """Create the submission queue config from environment variables."""
        return cls(
            kind=JobKind.SUBMISSION,
            max_attempts=_get_int_env("SUBMISSION_MAX_ATTEMPTS", 3),
            backoff_base_seconds=_get_float_env("SUBMISSION_BACKOFF_BASE", 2.0),
            backoff_max_seconds=_get_float_env("SUBMISSION_BACKOFF_MAX", 60.0),
            priority=1,
            keep_completed=_get_int_env("SUBMISSION_KEEP_COMPLETED", 100),
            keep_failed=_get_int_env("SUBMISSION_KEEP_FAILED", 500),
            lease_seconds=_get_float_env("SUBMISSION_LEASE_SECONDS", 180.0),
        )

    @classmethod
    def tally_from_environment(cls) -> QueueKindConfig:
        """Create the tally queue config from environment variables."""
        return cls(
            kind=JobKind.TALLY,
            max_attempts=_get_int_env("TALLY_MAX_ATTEMPTS", 2),
            backoff_base_seconds=_get_float_env("TALLY_BACKOFF_BASE", 5.0),
            backoff_max_seconds=_get_float_env("TALLY_BACKOFF_MAX", 300.0),
            priority=2,
            initial_delay_seconds=_get_float_env("TALLY_SETTLE_DELAY", 5.0),
            keep_completed=_get_int_env("TALLY_KEEP_COMPLETED", 50),
            keep_failed=_get_int_env("TALLY_KEEP_FAILED", 200),
            lease_seconds=_get_float_env("TALLY_LEASE_SECONDS", 300.0),
        )


@dataclass(frozen=True)
class WorkerPoolConfig:
    """Concurrency limits and deadlines for the worker pools.

    Attributes:
        submission_concurrency: Concurrent submission slots.
        tally_concurrency: Concurrent tally slots.
        submission_rate_per_second: Max submission job starts per second
            (0 disables the limiter).
        handler_timeout_seconds: Hard deadline for one job attempt.
        poll_timeout_seconds: How long a slot blocks on an empty queue.
    """

    submission_concurrency: int = 5
    tally_concurrency: int = 2
    submission_rate_per_second: float = 10.0
    handler_timeout_seconds: float = 150.0
    poll_timeout_seconds: float = 1.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.submission_concurrency < 1:
            raise ValueError(
                f"submission_concurrency must be positive, got {self.submission_concurrency}"
            )
        if self.tally_concurrency < 1:
            raise ValueError(
                f"tally_concurrency must be positive, got {self.tally_concurrency}"
            )
        if self.submission_rate_per_second < 0:
            raise ValueError("submission_rate_per_second must be non-negative")
        if self.handler_timeout_seconds <= 0:
            raise ValueError("handler_timeout_seconds must be positive")
        if self.poll_timeout_seconds <= 0:
            raise ValueError("poll_timeout_seconds must be positive")

    @classmethod
    def from_environment(cls) -> WorkerPoolConfig:
        """Create config from environment variables with defaults."""
        return cls(
            submission_concurrency=_get_int_env("SUBMISSION_WORKERS", 5),
            tally_concurrency=_get_int_env("TALLY_WORKERS", 2),
            submission_rate_per_second=_get_float_env("SUBMISSION_RATE_PER_SECOND", 10.0),
            handler_timeout_seconds=_get_float_env("WORKER_HANDLER_TIMEOUT", 150.0),
            poll_timeout_seconds=_get_float_env("WORKER_POLL_TIMEOUT", 1.0),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger and relayer connection settings.

    Attributes:
        mode: "evm" for the real chain, "stub" for the in-memory double.
        rpc_url: JSON-RPC endpoint of the host chain.
        relayer_url: FHE relayer base URL.
        chain_id: Host chain id (Sepolia by default).
        voting_contract_address: Deployed voting contract.
        project_private_key: Key of the shared submitting identity.
        rpc_timeout_seconds: Timeout of a single RPC request.
        confirmation_timeout_seconds: Max wait for inclusion.
        poll_interval_seconds: Receipt polling interval.
        relayer_timeout_seconds: Timeout of a relayer request.
        gas_limit: Fallback gas limit when estimation is skipped.
    """

    mode: str = "stub"
    rpc_url: str = "https://eth-sepolia.public.blastapi.io"
    relayer_url: str = "https://relayer.testnet.zama.org"
    chain_id: int = 11155111
    voting_contract_address: str | None = None
    project_private_key: str | None = None
    rpc_timeout_seconds: float = 15.0
    confirmation_timeout_seconds: float = 120.0
    poll_interval_seconds: float = 2.0
    relayer_timeout_seconds: float = 30.0
    gas_limit: int = 3_000_000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.mode not in ("evm", "stub"):
            raise ValueError(f"mode must be 'evm' or 'stub', got {self.mode!r}")
        if self.rpc_timeout_seconds <= 0 or self.confirmation_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

    def missing_settings(self) -> list[str]:
        """Names of settings the real ledger client requires but lacks."""
        required = {
            "rpc_url": self.rpc_url,
            "relayer_url": self.relayer_url,
            "voting_contract_address": self.voting_contract_address,
            "project_private_key": self.project_private_key,
        }
        return [name for name, value in required.items() if not value]

    @classmethod
    def from_environment(cls) -> LedgerConfig:
        """Create config from environment variables with defaults."""
        return cls(
            mode=(_get_str_env("LEDGER_MODE", "stub") or "stub").lower(),
            rpc_url=_get_str_env("NETWORK_RPC_URL", cls.rpc_url) or cls.rpc_url,
            relayer_url=_get_str_env("RELAYER_URL", cls.relayer_url) or cls.relayer_url,
            chain_id=_get_int_env("CHAIN_ID", 11155111),
            voting_contract_address=_get_str_env("VOTING_CONTRACT_ADDRESS"),
            project_private_key=_get_str_env("PROJECT_PRIVATE_KEY"),
            rpc_timeout_seconds=_get_float_env("LEDGER_RPC_TIMEOUT", 15.0),
            confirmation_timeout_seconds=_get_float_env(
                "LEDGER_CONFIRMATION_TIMEOUT", 120.0
            ),
            poll_interval_seconds=_get_float_env("LEDGER_POLL_INTERVAL", 2.0),
            relayer_timeout_seconds=_get_float_env("RELAYER_TIMEOUT", 30.0),
        )


# Pre-defined configurations for common use cases

DEFAULT_SUBMISSION_QUEUE_CONFIG = QueueKindConfig(kind=JobKind.SUBMISSION)

DEFAULT_TALLY_QUEUE_CONFIG = QueueKindConfig(
    kind=JobKind.TALLY,
    max_attempts=2,
    backoff_base_seconds=5.0,
    backoff_max_seconds=300.0,
    priority=2,
    initial_delay_seconds=5.0,
    keep_completed=50,
    keep_failed=200,
    lease_seconds=300.0,
)

DEFAULT_WORKER_POOL_CONFIG = WorkerPoolConfig()

# Testing configs with no real waiting
TEST_SUBMISSION_QUEUE_CONFIG = QueueKindConfig(
    kind=JobKind.SUBMISSION,
    max_attempts=3,
    backoff_base_seconds=0.0,
    backoff_max_seconds=0.0,
    lease_seconds=5.0,
)

TEST_TALLY_QUEUE_CONFIG = QueueKindConfig(
    kind=JobKind.TALLY,
    max_attempts=2,
    backoff_base_seconds=0.0,
    backoff_max_seconds=0.0,
    priority=2,
    initial_delay_seconds=0.0,
    lease_seconds=5.0,
)

TEST_WORKER_POOL_CONFIG = WorkerPoolConfig(
    submission_concurrency=4,
    tally_concurrency=1,
    submission_rate_per_second=0.0,
    handler_timeout_seconds=5.0,
    poll_timeout_seconds=0.05,
)
