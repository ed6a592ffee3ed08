"""Redis-backed job queue.

Layout per job kind (``{prefix}`` defaults to "privote"):

    {prefix}:job:{id}            hash with the job fields
    {prefix}:{kind}:waiting      zset, score = priority * 1e12 + enqueue seq
    {prefix}:{kind}:delayed      zset, score = epoch seconds when due
    {prefix}:{kind}:active       zset, score = lease expiry (epoch seconds)
    {prefix}:{kind}:completed    zset, score = finish time
    {prefix}:{kind}:failed       zset, score = finish time
    {prefix}:{kind}:lease_failed zset of failed jobs whose last lease expired

Every state change runs as one Lua script, so concurrent workers in any
number of processes never lease the same job twice. Timestamps come from
the Redis server clock. Acknowledgements are fenced by the attempt
number: a worker whose lease expired and whose job was re-leased cannot
complete or fail the newer attempt. A lease that expires on the last
attempt fails the job with reason "lease_expired" and lists it under
lease_failed until a worker acknowledges it.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from privote.config.pipeline_config import (
    DEFAULT_SUBMISSION_QUEUE_CONFIG,
    DEFAULT_TALLY_QUEUE_CONFIG,
    QueueKindConfig,
)
from privote.domain.errors import QueueUnavailableError
from privote.domain.models.job import (
    BackoffPolicy,
    Job,
    JobKind,
    JobOptions,
    JobState,
    JobStatusSnapshot,
)

logger = structlog.get_logger()

_NOW_LUA = """
local t = redis.call('TIME')
local now = tonumber(t[1]) + tonumber(t[2]) / 1000000
"""

_PRUNE_LUA = """
local function prune(set, keep, retention, now, prefix)
  local cutoff = now - retention
  local old = redis.call('ZRANGEBYSCORE', set, '-inf', cutoff)
  for _, id in ipairs(old) do redis.call('DEL', prefix .. id) end
  redis.call('ZREMRANGEBYSCORE', set, '-inf', cutoff)
  local excess = redis.call('ZCARD', set) - keep
  if excess > 0 then
    local ids = redis.call('ZRANGE', set, 0, excess - 1)
    for _, id in ipairs(ids) do redis.call('DEL', prefix .. id) end
    redis.call('ZREMRANGEBYRANK', set, 0, excess - 1)
  end
end
"""

# KEYS: job, waiting, delayed, seq
# ARGV: id, kind, payload, max_attempts, backoff_base, backoff_max,
#       priority, delay, created_at
_ENQUEUE_LUA = _NOW_LUA + """
if redis.call('EXISTS', KEYS[1]) == 1 then return 0 end
local delay = tonumber(ARGV[8])
local seq = redis.call('INCR', KEYS[4])
redis.call('HSET', KEYS[1],
  'id', ARGV[1], 'kind', ARGV[2], 'payload', ARGV[3],
  'max_attempts', ARGV[4], 'backoff_base', ARGV[5], 'backoff_max', ARGV[6],
  'priority', ARGV[7], 'attempt', 0, 'progress', '{}',
  'created_at', ARGV[9], 'available_at', now + delay)
if delay > 0 then
  redis.call('HSET', KEYS[1], 'state', 'delayed')
  redis.call('ZADD', KEYS[3], now + delay, ARGV[1])
else
  redis.call('HSET', KEYS[1], 'state', 'waiting')
  redis.call('ZADD', KEYS[2], tonumber(ARGV[7]) * 1e12 + seq, ARGV[1])
end
return 1
"""

# KEYS: waiting, delayed, active, seq, failed, lease_failed
# ARGV: job key prefix, lease seconds, finished_at
_PROMOTE_LUA = """
local function requeue(id, now)
  local key = ARGV[1] .. id
  local seq = redis.call('INCR', KEYS[4])
  local priority = tonumber(redis.call('HGET', key, 'priority'))
  redis.call('HSET', key, 'state', 'waiting', 'available_at', now)
  redis.call('ZADD', KEYS[1], priority * 1e12 + seq, id)
end
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', now)
for _, id in ipairs(expired) do
  redis.call('ZREM', KEYS[3], id)
  local key = ARGV[1] .. id
  local fields = redis.call('HMGET', key, 'attempt', 'max_attempts')
  if fields[1] then
    if tonumber(fields[1]) >= tonumber(fields[2]) then
      redis.call('HSET', key, 'state', 'failed', 'error_reason', 'lease_expired',
        'finished_at', ARGV[3])
      redis.call('ZADD', KEYS[5], now, id)
      redis.call('ZADD', KEYS[6], now, id)
    else
      requeue(id, now)
    end
  end
end
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now)
for _, id in ipairs(due) do
  redis.call('ZREM', KEYS[2], id)
  requeue(id, now)
end
"""

# KEYS: waiting, delayed, active, seq, failed, lease_failed
# ARGV: job key prefix, lease seconds, finished_at
_DEQUEUE_LUA = _NOW_LUA + _PROMOTE_LUA + """
local head = redis.call('ZRANGE', KEYS[1], 0, 0)
if #head == 0 then return false end
local id = head[1]
local key = ARGV[1] .. id
redis.call('ZREM', KEYS[1], id)
redis.call('HINCRBY', key, 'attempt', 1)
redis.call('HSET', key, 'state', 'active')
redis.call('ZADD', KEYS[3], now + tonumber(ARGV[2]), id)
return id
"""

_REFRESH_LUA = _NOW_LUA + _PROMOTE_LUA + "return 1"

# KEYS: job
# ARGV: attempt, progress
_PROGRESS_LUA = """
if redis.call('HGET', KEYS[1], 'state') ~= 'active' then return 0 end
if redis.call('HGET', KEYS[1], 'attempt') ~= ARGV[1] then return 0 end
redis.call('HSET', KEYS[1], 'progress', ARGV[2])
return 1
"""

# KEYS: job, active, completed
# ARGV: id, attempt, result, finished_at, keep, retention, job key prefix
_COMPLETE_LUA = _NOW_LUA + _PRUNE_LUA + """
if redis.call('HGET', KEYS[1], 'state') ~= 'active' then return 0 end
if redis.call('HGET', KEYS[1], 'attempt') ~= ARGV[2] then return 0 end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HSET', KEYS[1], 'state', 'completed', 'result', ARGV[3],
  'finished_at', ARGV[4])
redis.call('ZADD', KEYS[3], now, ARGV[1])
prune(KEYS[3], tonumber(ARGV[5]), tonumber(ARGV[6]), now, ARGV[7])
return 1
"""

# KEYS: job, active, delayed, waiting, failed, seq
# ARGV: id, attempt, reason, retry (1/0), delay, finished_at, keep,
#       retention, job key prefix
_FAIL_LUA = _NOW_LUA + _PRUNE_LUA + """
local state = redis.call('HGET', KEYS[1], 'state')
if not state then return 'failed' end
if state ~= 'active' or redis.call('HGET', KEYS[1], 'attempt') ~= ARGV[2] then
  return state
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HSET', KEYS[1], 'error_reason', ARGV[3])
if ARGV[4] == '1' then
  local delay = tonumber(ARGV[5])
  if delay > 0 then
    redis.call('HSET', KEYS[1], 'state', 'delayed', 'available_at', now + delay)
    redis.call('ZADD', KEYS[3], now + delay, ARGV[1])
    return 'delayed'
  end
  local seq = redis.call('INCR', KEYS[6])
  local priority = tonumber(redis.call('HGET', KEYS[1], 'priority'))
  redis.call('HSET', KEYS[1], 'state', 'waiting', 'available_at', now)
  redis.call('ZADD', KEYS[4], priority * 1e12 + seq, ARGV[1])
  return 'waiting'
end
redis.call('HSET', KEYS[1], 'state', 'failed', 'finished_at', ARGV[6])
redis.call('ZADD', KEYS[5], now, ARGV[1])
prune(KEYS[5], tonumber(ARGV[7]), tonumber(ARGV[8]), now, ARGV[9])
return 'failed'
"""


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class RedisJobQueue:
    """JobQueueProtocol implementation on Redis sorted sets and hashes.

    Usage:
        queue = RedisJobQueue.from_url("redis://localhost:6379/0")
        job_id = await queue.enqueue(JobKind.SUBMISSION, {"vote_id": "..."})
        job = await queue.dequeue(JobKind.SUBMISSION, timeout=1.0)
        await queue.complete(job, {"tx_ref": "0x..."})
        await queue.close()
    """

    def __init__(
        self,
        client: aioredis.Redis,
        configs: dict[JobKind, QueueKindConfig] | None = None,
        prefix: str = "privote",
        poll_interval_seconds: float = 0.2,
    ) -> None:
        self._client = client
        self._configs = configs or {
            JobKind.SUBMISSION: DEFAULT_SUBMISSION_QUEUE_CONFIG,
            JobKind.TALLY: DEFAULT_TALLY_QUEUE_CONFIG,
        }
        self._prefix = prefix
        self._poll_interval = poll_interval_seconds
        self._enqueue_script = client.register_script(_ENQUEUE_LUA)
        self._dequeue_script = client.register_script(_DEQUEUE_LUA)
        self._refresh_script = client.register_script(_REFRESH_LUA)
        self._progress_script = client.register_script(_PROGRESS_LUA)
        self._complete_script = client.register_script(_COMPLETE_LUA)
        self._fail_script = client.register_script(_FAIL_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        configs: dict[JobKind, QueueKindConfig] | None = None,
        prefix: str = "privote",
    ) -> RedisJobQueue:
        client = aioredis.from_url(url, decode_responses=True)
        return cls(client, configs=configs, prefix=prefix)

    def config_for(self, kind: JobKind) -> QueueKindConfig:
        return self._configs[kind]

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def enqueue(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        options = options or JobOptions()
        config = self._configs[kind]
        job_id = options.job_id or str(uuid4())
        backoff = options.backoff or config.backoff
        delay = (
            options.delay_seconds
            if options.delay_seconds is not None
            else config.initial_delay_seconds
        )
        priority = options.priority if options.priority is not None else config.priority

        try:
            created = await self._enqueue_script(
                keys=[
                    self._job_key(job_id),
                    self._set_key(kind, "waiting"),
                    self._set_key(kind, "delayed"),
                    self._seq_key(),
                ],
                args=[
                    job_id,
                    kind.value,
                    json.dumps(payload),
                    options.max_attempts or config.max_attempts,
                    backoff.base_delay_seconds,
                    backoff.max_delay_seconds,
                    priority,
                    delay,
                    datetime.now(timezone.utc).isoformat(),
                ],
            )
        except RedisError as e:
            logger.error("job_enqueue_failed", job_kind=kind.value, error=str(e))
            raise QueueUnavailableError(str(e)) from e

        if int(created):
            logger.debug(
                "job_enqueued", job_id=job_id, job_kind=kind.value, delay=delay
            )
        else:
            logger.debug("job_enqueue_deduplicated", job_id=job_id)
        return job_id

    async def dequeue(self, kind: JobKind, timeout: float = 1.0) -> Job | None:
        deadline = time.monotonic() + max(timeout, 0.0)
        config = self._configs[kind]
        while True:
            try:
                job_id = await self._dequeue_script(
                    keys=self._kind_keys(kind),
                    args=[
                        self._job_key(""),
                        config.lease_seconds,
                        datetime.now(timezone.utc).isoformat(),
                    ],
                )
            except RedisError as e:
                raise QueueUnavailableError(str(e)) from e
            if job_id:
                job = await self._load(_decode(job_id))
                if job is not None:
                    return job
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self._poll_interval)

    async def save_progress(self, job: Job, progress: dict[str, Any]) -> None:
        merged = {**job.progress, **progress}
        try:
            saved = await self._progress_script(
                keys=[self._job_key(job.id)],
                args=[job.attempt, json.dumps(merged)],
            )
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        if int(saved):
            job.progress.update(progress)

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> None:
        config = self._configs[job.kind]
        try:
            await self._complete_script(
                keys=[
                    self._job_key(job.id),
                    self._set_key(job.kind, "active"),
                    self._set_key(job.kind, "completed"),
                ],
                args=[
                    job.id,
                    job.attempt,
                    json.dumps(result or {}),
                    datetime.now(timezone.utc).isoformat(),
                    config.keep_completed,
                    config.retention_seconds,
                    self._job_key(""),
                ],
            )
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def fail(self, job: Job, reason: str, retryable: bool) -> JobState:
        config = self._configs[job.kind]
        retry = retryable and job.attempt < job.max_attempts
        try:
            state = await self._fail_script(
                keys=[
                    self._job_key(job.id),
                    self._set_key(job.kind, "active"),
                    self._set_key(job.kind, "delayed"),
                    self._set_key(job.kind, "waiting"),
                    self._set_key(job.kind, "failed"),
                    self._seq_key(),
                ],
                args=[
                    job.id,
                    job.attempt,
                    reason,
                    "1" if retry else "0",
                    job.backoff.delay_for(job.attempt) if retry else 0,
                    datetime.now(timezone.utc).isoformat(),
                    config.keep_failed,
                    config.retention_seconds,
                    self._job_key(""),
                ],
            )
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        return JobState(_decode(state))

    async def lease_failures(self, kind: JobKind, limit: int = 100) -> list[Job]:
        try:
            await self._refresh(kind)
            ids = await self._client.zrange(
                self._set_key(kind, "lease_failed"), 0, limit - 1
            )
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        jobs = []
        for job_id in ids:
            job = await self._load(_decode(job_id))
            if job is None:
                # pruned from the failed set before anyone picked it up
                await self._drop_lease_failure(kind, _decode(job_id))
                continue
            jobs.append(job)
        return jobs

    async def ack_lease_failure(self, job: Job) -> None:
        await self._drop_lease_failure(job.kind, job.id)

    async def _drop_lease_failure(self, kind: JobKind, job_id: str) -> None:
        try:
            await self._client.zrem(self._set_key(kind, "lease_failed"), job_id)
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def get_status(self, job_id: str) -> JobStatusSnapshot | None:
        job = await self._load(job_id)
        return job.snapshot() if job is not None else None

    async def stats(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = {}
        try:
            for kind in JobKind:
                await self._refresh(kind)
                async with self._client.pipeline(transaction=False) as pipe:
                    for state in JobState:
                        pipe.zcard(self._set_key(kind, state.value))
                    sizes = await pipe.execute()
                counts[kind.value] = {
                    state.value: int(size) for state, size in zip(JobState, sizes)
                }
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        return counts

    async def close(self) -> None:
        await self._client.aclose()

    async def _refresh(self, kind: JobKind) -> None:
        await self._refresh_script(
            keys=self._kind_keys(kind),
            args=[self._job_key(""), 0, datetime.now(timezone.utc).isoformat()],
        )

    async def _load(self, job_id: str) -> Job | None:
        try:
            raw = await self._client.hgetall(self._job_key(job_id))
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        if not raw:
            return None
        data = {_decode(k): _decode(v) for k, v in raw.items()}
        return Job(
            id=data["id"],
            kind=JobKind(data["kind"]),
            payload=json.loads(data["payload"]),
            max_attempts=int(data["max_attempts"]),
            backoff=BackoffPolicy(
                base_delay_seconds=float(data["backoff_base"]),
                max_delay_seconds=float(data["backoff_max"]),
            ),
            priority=int(data["priority"]),
            state=JobState(data["state"]),
            attempt=int(data["attempt"]),
            available_at=float(data.get("available_at", 0.0)),
            progress=json.loads(data.get("progress") or "{}"),
            result=json.loads(data["result"]) if data.get("result") else None,
            error_reason=data.get("error_reason") or None,
            created_at=_parse_datetime(data.get("created_at"))
            or datetime.now(timezone.utc),
            finished_at=_parse_datetime(data.get("finished_at")),
        )

    def _kind_keys(self, kind: JobKind) -> list[str]:
        return [
            self._set_key(kind, "waiting"),
            self._set_key(kind, "delayed"),
            self._set_key(kind, "active"),
            self._seq_key(),
            self._set_key(kind, "failed"),
            self._set_key(kind, "lease_failed"),
        ]

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _set_key(self, kind: JobKind, state: str) -> str:
        return f"{self._prefix}:{kind.value}:{state}"

    def _seq_key(self) -> str:
        return f"{self._prefix}:seq"
