"""Worker pools for vote submission and tally jobs.

Workers:
- WorkerPool: Bounded-concurrency consumer for one job kind
- SubmissionHandler: Drives one vote through ledger submission
- TallyHandler: Triggers ledger-side aggregation for a closed proposal
- PipelineRunner: Runs the pools of one process with graceful shutdown
"""

from privote.workers.error_handler import (
    ErrorAction,
    ErrorCategory,
    ErrorDecision,
    ErrorHandler,
    categorize_error,
    register_error_category,
)
from privote.workers.submission_handler import SubmissionHandler
from privote.workers.tally_handler import TallyHandler
from privote.workers.worker_pool import (
    JobHandler,
    RateLimiter,
    WorkerPool,
    WorkerPoolStats,
)

__all__ = [
    # Error handling
    "ErrorAction",
    "ErrorCategory",
    "ErrorDecision",
    "ErrorHandler",
    "categorize_error",
    "register_error_category",
    # Handlers
    "SubmissionHandler",
    "TallyHandler",
    # Pools
    "JobHandler",
    "RateLimiter",
    "WorkerPool",
    "WorkerPoolStats",
]
