# leadenrich/services/job_queue.py
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from redis.asyncio import Redis

from leadenrich.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Ready jobs inspected per claim when choosing by priority
CLAIM_WINDOW = 10


@dataclass(frozen=True)
class QueuedJob:
    job_id: str
    lead_id: int
    processing_job_id: int
    priority: int = 1
    attempts: int = 0
    max_attempts: int = 3
    enqueued_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "QueuedJob":
        return cls(**json.loads(raw))


@dataclass(frozen=True)
class QueueStats:
    waiting: int
    delayed: int
    active: int
    completed: int
    failed: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class LeadJobQueue:
    """Durable lead-processing queue on Redis.

    Layout under ``queue_name``:
      - ``<name>``              sorted set, job id scored by ready-at (ms)
      - ``<name>:jobs``         hash, job id -> job JSON
      - ``<name>:processing``   sorted set, job id scored by claim time (ms)
      - ``<name>:dead_letter``  list of exhausted jobs
      - ``<name>:completed``    counter

    Delivery is at-least-once: a claimed job that is never completed or
    failed is requeued by ``recover_stalled``.
    """

    def __init__(
        self,
        redis_client: Redis,
        queue_name: str = "lead_jobs",
        max_attempts: int = 3,
        backoff_base_ms: int = 2000,
        dead_letter_retention_days: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.queue_name = queue_name
        self.jobs_hash = f"{queue_name}:jobs"
        self.processing_set = f"{queue_name}:processing"
        self.dead_letter_queue = f"{queue_name}:dead_letter"
        self.completed_counter = f"{queue_name}:completed"
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.dead_letter_retention_days = dead_letter_retention_days
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def backoff_ms(self, attempt: int) -> int:
        return self.backoff_base_ms * (2 ** (attempt - 1))

    async def enqueue(
        self,
        lead_id: int,
        processing_job_id: int,
        delay_ms: int = 0,
        priority: int = 1,
    ) -> QueuedJob:
        job = QueuedJob(
            job_id=f"lead:{lead_id}:{uuid4().hex[:12]}",
            lead_id=lead_id,
            processing_job_id=processing_job_id,
            priority=priority,
            max_attempts=self.max_attempts,
            enqueued_at=datetime.now(timezone.utc).isoformat(),
        )
        ready_at = self._now_ms() + max(0, delay_ms)

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.jobs_hash, job.job_id, job.to_json())
            pipe.zadd(self.queue_name, {job.job_id: ready_at})
            await pipe.execute()

        logger.info(
            "job.enqueued",
            job_id=job.job_id,
            lead_id=lead_id,
            priority=priority,
            delay_ms=delay_ms,
        )
        return job

    async def claim_next(self) -> Optional[QueuedJob]:
        """Claim the highest-priority ready job, or None if nothing is ready."""
        now = self._now_ms()
        ready = await self.redis.zrangebyscore(
            self.queue_name, "-inf", now, start=0, num=CLAIM_WINDOW, withscores=True
        )
        if not ready:
            return None

        raw_jobs = await self.redis.hmget(self.jobs_hash, [job_id for job_id, _ in ready])
        candidates = []
        for (job_id, score), raw in zip(ready, raw_jobs):
            if raw is None:
                # Orphaned id without payload
                await self.redis.zrem(self.queue_name, job_id)
                continue
            job = QueuedJob.from_json(raw)
            candidates.append((job.priority, score, job))

        for _, _, job in sorted(candidates, key=lambda item: (item[0], item[1])):
            # Only the worker whose ZREM removed the id may mark it processing
            if not await self.redis.zrem(self.queue_name, job.job_id):
                continue
            await self.redis.zadd(self.processing_set, {job.job_id: now})

            claimed = replace(job, attempts=job.attempts + 1)
            await self.redis.hset(self.jobs_hash, claimed.job_id, claimed.to_json())
            logger.debug("job.claimed", job_id=claimed.job_id, attempt=claimed.attempts)
            return claimed

        return None

    async def complete(self, job: QueuedJob) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_set, job.job_id)
            pipe.hdel(self.jobs_hash, job.job_id)
            pipe.incr(self.completed_counter)
            await pipe.execute()

        logger.info("job.completed", job_id=job.job_id, lead_id=job.lead_id, attempts=job.attempts)

    async def fail(self, job: QueuedJob, error: str) -> bool:
        """Record a failed attempt. Returns True if the job was scheduled to retry."""
        failed = replace(job, last_error=error[:1000])

        if job.attempts < job.max_attempts:
            delay_ms = self.backoff_ms(job.attempts)
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self.processing_set, job.job_id)
                pipe.hset(self.jobs_hash, job.job_id, failed.to_json())
                pipe.zadd(self.queue_name, {job.job_id: self._now_ms() + delay_ms})
                await pipe.execute()

            logger.warning(
                "job.retry_scheduled",
                job_id=job.job_id,
                lead_id=job.lead_id,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                delay_ms=delay_ms,
                error=error,
            )
            return True

        entry = dict(asdict(failed), failed_at=datetime.now(timezone.utc).isoformat())
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_set, job.job_id)
            pipe.hdel(self.jobs_hash, job.job_id)
            pipe.lpush(self.dead_letter_queue, json.dumps(entry))
            pipe.expire(self.dead_letter_queue, self.dead_letter_retention_days * 24 * 3600)
            await pipe.execute()

        logger.error(
            "job.dead_letter",
            job_id=job.job_id,
            lead_id=job.lead_id,
            attempts=job.attempts,
            error=error,
        )
        return False

    async def recover_stalled(self, visibility_timeout_ms: int) -> int:
        """Requeue claimed jobs whose worker stopped reporting."""
        cutoff = self._now_ms() - visibility_timeout_ms
        stalled = await self.redis.zrangebyscore(self.processing_set, "-inf", cutoff)

        recovered = 0
        for job_id in stalled:
            if not await self.redis.zrem(self.processing_set, job_id):
                continue
            if not await self.redis.hexists(self.jobs_hash, job_id):
                continue
            await self.redis.zadd(self.queue_name, {job_id: self._now_ms()})
            recovered += 1
            logger.warning("job.stalled_requeued", job_id=job_id)

        return recovered

    async def discard(self, job_id: str) -> None:
        """Drop a job that was never claimed."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.queue_name, job_id)
            pipe.hdel(self.jobs_hash, job_id)
            await pipe.execute()
        logger.info("job.discarded", job_id=job_id)

    async def dead_letters(self, limit: int = 100) -> List[Dict[str, Any]]:
        entries = await self.redis.lrange(self.dead_letter_queue, 0, limit - 1)
        return [json.loads(entry) for entry in entries]

    async def stats(self) -> QueueStats:
        now = self._now_ms()
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.zcount(self.queue_name, "-inf", now)
            pipe.zcount(self.queue_name, f"({now}", "+inf")
            pipe.zcard(self.processing_set)
            pipe.get(self.completed_counter)
            pipe.llen(self.dead_letter_queue)
            waiting, delayed, active, completed, failed = await pipe.execute()

        return QueueStats(
            waiting=int(waiting or 0),
            delayed=int(delayed or 0),
            active=int(active or 0),
            completed=int(completed or 0),
            failed=int(failed or 0),
        )
