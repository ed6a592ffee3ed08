"""In-memory job queue stub for testing.

Implements the full JobQueueProtocol contract (priority then FIFO,
delays, exponential backoff, leases with redelivery until the attempts
run out, attempt fencing of stale acknowledgements, bounded retention)
on a single event loop. The clock is injectable so tests can step time
instead of sleeping through backoff delays.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import structlog

from privote.config.pipeline_config import (
    DEFAULT_SUBMISSION_QUEUE_CONFIG,
    DEFAULT_TALLY_QUEUE_CONFIG,
    QueueKindConfig,
)
from privote.domain.errors import QueueUnavailableError
from privote.domain.models.job import (
    Job,
    JobKind,
    JobOptions,
    JobState,
    JobStatusSnapshot,
)

logger = structlog.get_logger()

_POLL_INTERVAL_SECONDS = 0.01


class JobQueueStub:
    """Stub implementation of JobQueueProtocol.

    Usage:
        queue = JobQueueStub()
        job_id = await queue.enqueue(JobKind.SUBMISSION, {"vote_id": "..."})
        job = await queue.dequeue(JobKind.SUBMISSION, timeout=0.1)
        await queue.complete(job, {"tx_ref": "0x..."})

        # Step time instead of waiting for backoff
        now = [0.0]
        queue = JobQueueStub(clock=lambda: now[0])
        now[0] += 10

        # Simulate the substrate rejecting writes
        queue.set_unavailable(True)
    """

    def __init__(
        self,
        configs: dict[JobKind, QueueKindConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = configs or {
            JobKind.SUBMISSION: DEFAULT_SUBMISSION_QUEUE_CONFIG,
            JobKind.TALLY: DEFAULT_TALLY_QUEUE_CONFIG,
        }
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._order: dict[str, int] = {}
        self._lease_expires: dict[str, float] = {}
        self._finished_at: dict[str, float] = {}
        self._lease_failures: dict[str, Job] = {}
        self._seq = 0
        self._unavailable = False
        self._closed = False
        self.enqueue_calls: int = 0

    def set_unavailable(self, unavailable: bool) -> None:
        """Make enqueue raise QueueUnavailableError (failure injection)."""
        self._unavailable = unavailable

    def config_for(self, kind: JobKind) -> QueueKindConfig:
        return self._configs[kind]

    def job(self, job_id: str) -> Job | None:
        """Direct access to a stored job (for test assertions)."""
        return self._jobs.get(job_id)

    def expire_leases(self) -> None:
        """Force every active lease to expire now (simulated worker crash)."""
        now = self._clock()
        for job_id in self._lease_expires:
            self._lease_expires[job_id] = now

    async def enqueue(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        self.enqueue_calls += 1
        if self._unavailable or self._closed:
            raise QueueUnavailableError("stub queue unavailable")

        options = options or JobOptions()
        if options.job_id is not None and options.job_id in self._jobs:
            return options.job_id

        config = self._configs[kind]
        delay = (
            options.delay_seconds
            if options.delay_seconds is not None
            else config.initial_delay_seconds
        )
        now = self._clock()
        job = Job(
            id=options.job_id or str(uuid4()),
            kind=kind,
            payload=dict(payload),
            max_attempts=options.max_attempts or config.max_attempts,
            backoff=options.backoff or config.backoff,
            priority=options.priority if options.priority is not None else config.priority,
            state=JobState.DELAYED if delay > 0 else JobState.WAITING,
            available_at=now + delay,
        )
        self._jobs[job.id] = job
        self._order[job.id] = self._next_seq()
        logger.debug("job_enqueued", job_id=job.id, job_kind=kind.value, delay=delay)
        return job.id

    async def dequeue(self, kind: JobKind, timeout: float = 1.0) -> Job | None:
        # Wall-clock wait bound; eligibility uses the injectable clock.
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            job = self._lease_next(kind)
            if job is not None:
                return job
            if self._closed or time.monotonic() >= deadline:
                return None
            await asyncio.sleep(_POLL_INTERVAL_SECONDS)

    async def save_progress(self, job: Job, progress: dict[str, Any]) -> None:
        stored = self._leased(job)
        if stored is None:
            return
        stored.progress.update(progress)
        if stored is not job:
            job.progress.update(progress)

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> None:
        stored = self._leased(job)
        if stored is None:
            return
        stored.state = JobState.COMPLETED
        stored.result = result or {}
        self._finish(stored)

    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        stored = self._jobs.get(job.id)
        if stored is None:
            return JobState.FAILED
        if self._leased(job) is None:
            return stored.state

        stored.error_reason = reason
        self._lease_expires.pop(stored.id, None)
        if retryable and stored.attempt < stored.max_attempts:
            delay = stored.backoff.delay_for(stored.attempt)
            stored.state = JobState.DELAYED if delay > 0 else JobState.WAITING
            stored.available_at = self._clock() + delay
            self._order[stored.id] = self._next_seq()
            return stored.state

        stored.state = JobState.FAILED
        self._finish(stored)
        return JobState.FAILED

    async def lease_failures(self, kind: JobKind, limit: int = 100) -> list[Job]:
        self._promote_due()
        jobs = [job for job in self._lease_failures.values() if job.kind is kind]
        return jobs[:limit]

    async def ack_lease_failure(self, job: Job) -> None:
        self._lease_failures.pop(job.id, None)

    async def get_status(self, job_id: str) -> JobStatusSnapshot | None:
        self._promote_due()
        job = self._jobs.get(job_id)
        return job.snapshot() if job is not None else None

    async def stats(self) -> dict[str, dict[str, int]]:
        self._promote_due()
        counts: dict[str, dict[str, int]] = {
            kind.value: {state.value: 0 for state in JobState} for kind in JobKind
        }
        for job in self._jobs.values():
            counts[job.kind.value][job.state.value] += 1
        return counts

    async def close(self) -> None:
        self._closed = True

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _promote_due(self) -> None:
        now = self._clock()
        for job_id, expires in list(self._lease_expires.items()):
            if expires > now:
                continue
            job = self._jobs[job_id]
            del self._lease_expires[job_id]
            logger.warning("job_lease_expired", job_id=job_id, attempt=job.attempt)
            if job.attempt >= job.max_attempts:
                job.state = JobState.FAILED
                job.error_reason = "lease_expired"
                self._lease_failures[job_id] = job
                self._finish(job)
                continue
            job.state = JobState.WAITING
            job.available_at = now
            self._order[job_id] = self._next_seq()
        for job in self._jobs.values():
            if job.state is JobState.DELAYED and job.available_at <= now:
                job.state = JobState.WAITING

    def _lease_next(self, kind: JobKind) -> Job | None:
        self._promote_due()
        eligible = [
            job
            for job in self._jobs.values()
            if job.kind is kind and job.state is JobState.WAITING
        ]
        if not eligible:
            return None
        job = min(
            eligible, key=lambda j: (j.priority, j.available_at, self._order[j.id])
        )
        job.state = JobState.ACTIVE
        job.attempt += 1
        self._lease_expires[job.id] = self._clock() + self._configs[kind].lease_seconds
        # workers hold a copy, so a stale attempt can be told apart
        return replace(job, payload=dict(job.payload), progress=dict(job.progress))

    def _leased(self, job: Job) -> Job | None:
        """The stored job if ``job`` still holds its current lease."""
        stored = self._jobs.get(job.id)
        if stored is None or stored.state is not JobState.ACTIVE:
            return None
        if stored.attempt != job.attempt:
            return None
        return stored

    def _finish(self, job: Job) -> None:
        job.finished_at = datetime.now(timezone.utc)
        self._lease_expires.pop(job.id, None)
        self._finished_at[job.id] = self._clock()
        self._prune(job.kind)

    def _prune(self, kind: JobKind) -> None:
        """Drop finished jobs beyond the retention window or count."""
        config = self._configs[kind]
        now = self._clock()
        for state, keep in (
            (JobState.COMPLETED, config.keep_completed),
            (JobState.FAILED, config.keep_failed),
        ):
            finished = sorted(
                (j for j in self._jobs.values() if j.kind is kind and j.state is state),
                key=lambda j: self._finished_at[j.id],
                reverse=True,
            )
            for index, job in enumerate(finished):
                expired = now - self._finished_at[job.id] > config.retention_seconds
                if index >= keep or expired:
                    del self._jobs[job.id]
                    del self._order[job.id]
                    del self._finished_at[job.id]
