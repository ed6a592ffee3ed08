"""Worker pool: bounded concurrent slots draining one job kind.

Each slot dequeues one job at a time, runs the kind handler under a hard
deadline and acknowledges the outcome to the queue:

- SUCCESS -> complete
- RETRY -> fail(retryable=True); the attempts are exhausted if that
  leaves the job FAILED
- TERMINAL_FAILURE -> fail(retryable=False)

Whenever a job ends FAILED the handler's ``on_failed(job, reason,
exhausted)`` hook runs. That includes jobs the queue failed on its
own because their final lease expired; the pool collects those after
every poll.

Exceptions escaping a handler are classified by ErrorHandler. A deadline
overrun counts as a transient failure.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from privote.application.ports.job_queue import JobQueueProtocol
from privote.domain.models.job import Job, JobKind, JobState
from privote.domain.models.outcome import HandlerOutcome, OutcomeKind
from privote.infrastructure.monitoring.metrics import PipelineMetrics
from privote.infrastructure.observability.correlation import job_log_context
from privote.workers.error_handler import ErrorHandler

logger = structlog.get_logger()


class JobHandler(Protocol):
    """A callable that runs one attempt of a job."""

    kind: JobKind

    async def __call__(self, job: Job) -> HandlerOutcome: ...


class RateLimiter:
    """Caps job starts to ``max_per_second`` over a sliding one-second window.

    A rate of 0 disables limiting.
    """

    def __init__(self, max_per_second: float) -> None:
        self._max = max_per_second
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._max > 0

    async def acquire(self) -> None:
        if not self.enabled:
            return
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._window and now - self._window[0] >= 1.0:
                    self._window.popleft()
                if len(self._window) < self._max:
                    self._window.append(now)
                    return
                await asyncio.sleep(1.0 - (now - self._window[0]))


@dataclass
class WorkerPoolStats:
    """Counters tracked by a worker pool."""

    jobs_started: int = 0
    jobs_completed: int = 0
    jobs_retried: int = 0
    jobs_failed: int = 0
    jobs_exhausted: int = 0
    ack_errors: int = 0


class WorkerPool:
    """Runs ``concurrency`` slots for one job kind.

    Usage:
        pool = WorkerPool(JobKind.SUBMISSION, queue, handler, concurrency=5)
        task = asyncio.create_task(pool.run())
        ...
        pool.stop()
        await task
    """

    def __init__(
        self,
        kind: JobKind,
        queue: JobQueueProtocol,
        handler: JobHandler,
        concurrency: int,
        handler_timeout_seconds: float = 150.0,
        poll_timeout_seconds: float = 1.0,
        rate_limiter: RateLimiter | None = None,
        error_handler: ErrorHandler | None = None,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self._kind = kind
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._handler_timeout = handler_timeout_seconds
        self._poll_timeout = poll_timeout_seconds
        self._rate_limiter = rate_limiter
        self._error_handler = error_handler or ErrorHandler()
        self._metrics = metrics
        self._running = False
        self._in_flight = 0
        self._reaping = asyncio.Lock()
        self.stats = WorkerPoolStats()

    @property
    def kind(self) -> JobKind:
        return self._kind

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        """Jobs currently being handled."""
        return self._in_flight

    async def run(self) -> None:
        """Run all slots until stop() is called."""
        self._running = True
        logger.info(
            "worker_pool_starting",
            job_kind=self._kind.value,
            concurrency=self._concurrency,
        )
        slots = [
            asyncio.create_task(
                self._slot(index), name=f"{self._kind.value}-slot-{index}"
            )
            for index in range(self._concurrency)
        ]
        try:
            await asyncio.gather(*slots)
        finally:
            self._running = False
            for slot in slots:
                slot.cancel()
            logger.info(
                "worker_pool_stopped", job_kind=self._kind.value, **self.get_stats()
            )

    def stop(self) -> None:
        """Signal the slots to exit after their current job."""
        logger.info("worker_pool_stop_requested", job_kind=self._kind.value)
        self._running = False

    async def run_once(self, timeout: float | None = None) -> bool:
        """Dequeue and process a single job.

        Returns:
            True if a job was processed.
        """
        job = await self._queue.dequeue(
            self._kind, self._poll_timeout if timeout is None else timeout
        )
        if job is not None:
            await self.process(job)
        await self.reap_lease_failures()
        return job is not None

    async def process(self, job: Job) -> HandlerOutcome:
        """Run the handler for a leased job and acknowledge the outcome."""
        with job_log_context(
            job_id=job.id,
            job_kind=job.kind.value,
            attempt=job.attempt,
            vote_id=job.payload.get("vote_id"),
            proposal_id=job.payload.get("proposal_id"),
        ):
            self.stats.jobs_started += 1
            if self._metrics is not None:
                self._metrics.record_job_started(self._kind.value)

            started = time.monotonic()
            self._in_flight += 1
            try:
                outcome = await self._run_handler(job)
            finally:
                self._in_flight -= 1
            await self._acknowledge(job, outcome, time.monotonic() - started)
            return outcome

    async def _slot(self, index: int) -> None:
        while self._running:
            try:
                if self._rate_limiter is not None:
                    await self._rate_limiter.acquire()
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Queue outage: back off and keep the slot alive.
                logger.exception(
                    "worker_slot_error", job_kind=self._kind.value, slot=index
                )
                await asyncio.sleep(self._poll_timeout)

    async def _run_handler(self, job: Job) -> HandlerOutcome:
        try:
            outcome = await asyncio.wait_for(self._handler(job), self._handler_timeout)
        except asyncio.TimeoutError:
            logger.warning("job_deadline_exceeded", timeout=self._handler_timeout)
            return HandlerOutcome.retry("handler_timeout")
        except Exception as e:
            return self._error_handler.to_outcome(e)

        if outcome.kind is OutcomeKind.CONTINUE:
            logger.error(
                "job_handler_incomplete", stage=getattr(outcome.stage, "value", None)
            )
            return HandlerOutcome.retry("handler_incomplete", outcome.stage)
        return outcome

    async def _acknowledge(
        self, job: Job, outcome: HandlerOutcome, duration: float
    ) -> None:
        kind = self._kind.value
        try:
            if outcome.kind is OutcomeKind.SUCCESS:
                await self._queue.complete(job, outcome.result)
                self.stats.jobs_completed += 1
                if self._metrics is not None:
                    self._metrics.record_job_completed(kind, duration)
                logger.info("job_completed", result=outcome.result, duration=duration)
                return

            reason = outcome.reason or "unspecified"
            retryable = outcome.kind is OutcomeKind.RETRY
            state = await self._queue.fail(job, reason, retryable=retryable)
        except Exception:
            # The lease expires and the job is redelivered.
            self.stats.ack_errors += 1
            logger.exception("job_ack_failed", outcome=outcome.kind.value)
            return

        if state is not JobState.FAILED:
            self.stats.jobs_retried += 1
            if self._metrics is not None:
                self._metrics.record_job_retried(kind, duration)
            logger.warning(
                "job_retry_scheduled",
                reason=reason,
                attempt=job.attempt,
                max_attempts=job.max_attempts,
            )
            return

        self.stats.jobs_failed += 1
        if self._metrics is not None:
            self._metrics.record_job_failed(kind, reason, duration)
        exhausted = retryable
        if exhausted:
            self.stats.jobs_exhausted += 1
            logger.error("job_attempts_exhausted", reason=reason, attempts=job.attempt)
        else:
            logger.warning("job_failed", reason=reason, attempt=job.attempt)
        await self._on_failed(job, reason, exhausted)

    async def reap_lease_failures(self) -> int:
        """Run the failure hook for jobs whose final lease expired.

        Such jobs were failed by the queue itself; no worker saw an outcome
        for them.

        Returns:
            Number of jobs handled.
        """
        if self._reaping.locked():
            return 0
        async with self._reaping:
            jobs = await self._queue.lease_failures(self._kind)
            for job in jobs:
                reason = job.error_reason or "lease_expired"
                with job_log_context(
                    job_id=job.id,
                    job_kind=job.kind.value,
                    attempt=job.attempt,
                    vote_id=job.payload.get("vote_id"),
                    proposal_id=job.payload.get("proposal_id"),
                ):
                    self.stats.jobs_failed += 1
                    self.stats.jobs_exhausted += 1
                    if self._metrics is not None:
                        self._metrics.record_job_failed(self._kind.value, reason, 0.0)
                    logger.error(
                        "job_attempts_exhausted", reason=reason, attempts=job.attempt
                    )
                    if await self._on_failed(job, reason, exhausted=True):
                        await self._queue.ack_lease_failure(job)
            return len(jobs)

    async def _on_failed(self, job: Job, reason: str, exhausted: bool) -> bool:
        hook = getattr(self._handler, "on_failed", None)
        if hook is None:
            return True
        try:
            await hook(job, reason, exhausted=exhausted)
        except Exception:
            logger.exception("job_failed_hook_error", reason=reason)
            return False
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get pool counters for monitoring."""
        return {
            "jobs_started": self.stats.jobs_started,
            "jobs_completed": self.stats.jobs_completed,
            "jobs_retried": self.stats.jobs_retried,
            "jobs_failed": self.stats.jobs_failed,
            "jobs_exhausted": self.stats.jobs_exhausted,
            "ack_errors": self.stats.ack_errors,
            "in_flight": self._in_flight,
            "running": self._running,
        }
