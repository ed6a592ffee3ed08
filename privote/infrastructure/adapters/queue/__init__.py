"""Job queue adapters."""

from privote.infrastructure.adapters.queue.redis_job_queue import RedisJobQueue

__all__: list[str] = ["RedisJobQueue"]
