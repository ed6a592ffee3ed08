"""Worker process runner.

Runs the submission and tally worker pools of one process with graceful
shutdown: SIGINT/SIGTERM stop the slots from leasing new jobs, in-flight
jobs finish (or hit their handler deadline), then connections close.
Jobs abandoned by a hard kill are redelivered when their lease expires.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterable

import structlog

from privote.bootstrap.pipeline import PipelineComponents
from privote.domain.errors import QueueUnavailableError
from privote.domain.models.job import JobKind
from privote.workers.error_handler import ErrorHandler
from privote.workers.worker_pool import RateLimiter, WorkerPool

logger = structlog.get_logger()

DEFAULT_METRICS_INTERVAL_SECONDS = 15.0


class PipelineRunner:
    """Owns the worker pools of one process.

    Usage:
        components = await build_pipeline()
        runner = PipelineRunner(components)
        await runner.run()  # until stop()
    """

    def __init__(
        self,
        components: PipelineComponents,
        kinds: Iterable[JobKind] = (JobKind.SUBMISSION, JobKind.TALLY),
        metrics_interval_seconds: float = DEFAULT_METRICS_INTERVAL_SECONDS,
    ) -> None:
        self._components = components
        self._kinds = tuple(kinds)
        self._metrics_interval = metrics_interval_seconds
        self._stopping = asyncio.Event()
        self.pools = self._build_pools()

    def _build_pools(self) -> list[WorkerPool]:
        config = self._components.worker_config
        error_handler = ErrorHandler()
        pools = []
        if JobKind.SUBMISSION in self._kinds:
            pools.append(
                WorkerPool(
                    JobKind.SUBMISSION,
                    self._components.queue,
                    self._components.submission_handler(),
                    concurrency=config.submission_concurrency,
                    handler_timeout_seconds=config.handler_timeout_seconds,
                    poll_timeout_seconds=config.poll_timeout_seconds,
                    rate_limiter=RateLimiter(config.submission_rate_per_second),
                    error_handler=error_handler,
                    metrics=self._components.metrics,
                )
            )
        if JobKind.TALLY in self._kinds:
            pools.append(
                WorkerPool(
                    JobKind.TALLY,
                    self._components.queue,
                    self._components.tally_handler(),
                    concurrency=config.tally_concurrency,
                    handler_timeout_seconds=config.handler_timeout_seconds,
                    poll_timeout_seconds=config.poll_timeout_seconds,
                    error_handler=error_handler,
                    metrics=self._components.metrics,
                )
            )
        return pools

    async def run(self) -> None:
        """Run all pools until stop() is called, then drain."""
        logger.info("workers_starting", kinds=[k.value for k in self._kinds])
        pool_tasks = [asyncio.create_task(pool.run()) for pool in self.pools]
        metrics_task = asyncio.create_task(self._report_queue_depth())
        try:
            await self._stopping.wait()
        finally:
            for pool in self.pools:
                pool.stop()
            await asyncio.gather(*pool_tasks, return_exceptions=True)
            metrics_task.cancel()
            await asyncio.gather(metrics_task, return_exceptions=True)
            logger.info(
                "workers_stopped",
                pools={p.kind.value: p.get_stats() for p in self.pools},
            )

    def stop(self) -> None:
        self._stopping.set()

    async def _report_queue_depth(self) -> None:
        while True:
            try:
                stats = await self._components.queue.stats()
                self._components.metrics.set_queue_depth(stats)
            except QueueUnavailableError as e:
                logger.warning("queue_stats_unavailable", error=str(e))
            await asyncio.sleep(self._metrics_interval)


async def run_workers(
    components: PipelineComponents,
    kinds: Iterable[JobKind] = (JobKind.SUBMISSION, JobKind.TALLY),
) -> None:
    """Run worker pools with signal-driven graceful shutdown."""
    runner = PipelineRunner(components, kinds)

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        runner.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await runner.run()
    finally:
        await components.close()
