"""
Job queue for AI grouping jobs.

Two backends:

- ``inline``: the job runs as an asyncio task in the API process. Tasks are
  tracked so shutdown can wait for them.
- ``redis``: the job id is pushed onto a Redis list and picked up by the
  ``ai_grouping`` worker (``python -m app.jobs.worker ai_grouping``).

Either way a runner must claim the job (queued -> processing) before doing
any work, so a job id delivered twice is still executed at most once.
"""

import asyncio
import json
from datetime import timedelta

from app.config import settings
from app.db.pool import db_pool
from app.features.contact_intelligence.domain.errors import ProviderError
from app.features.contact_intelligence.domain.models import BackgroundJob, utcnow
from app.features.contact_intelligence.domain.options import GroupingJobOptions
from app.features.contact_intelligence.jobs.ai_grouping_job import ai_grouping_job_runner
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import cache_store

logger = get_logger(__name__)

BACKEND_INLINE = "inline"
BACKEND_REDIS = "redis"


class JobQueue:
    def __init__(self, backend: str | None = None, runner=None, cache=None, queue_name: str | None = None):
        self.backend = (backend or settings.JOB_QUEUE_BACKEND).lower()
        if self.backend not in (BACKEND_INLINE, BACKEND_REDIS):
            raise ValueError(f"Unknown job queue backend '{self.backend}'")
        self.runner = runner or ai_grouping_job_runner
        self.cache = cache or cache_store
        self.queue_name = queue_name or settings.JOB_QUEUE_NAME
        self._tasks: set[asyncio.Task] = set()

    async def start(self, user_id: str, options: GroupingJobOptions) -> BackgroundJob:
        """Persist a queued job and hand it to the backend; returns without waiting for it."""
        job = await self.runner.create_job(user_id, options)
        try:
            await self.submit(job)
        except Exception as e:
            logger.error("Failed to enqueue job", job_id=job.id, error=str(e))
            job.fail(f"Could not enqueue job: {e}")
            await self.runner.job_repository.save(job)
            raise ProviderError("Job queue unavailable", provider=self.backend) from e

        logger.info("Job enqueued", job_id=job.id, user_id=user_id, backend=self.backend)
        return job

    async def submit(self, job: BackgroundJob) -> None:
        if self.backend == BACKEND_REDIS:
            client = await self.cache.get_client()
            await client.lpush(self.queue_name, json.dumps({"job_id": job.id}))
            return

        task = asyncio.create_task(self._run_inline(job.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_inline(self, job_id: str) -> None:
        try:
            await self.runner.run(job_id)
        except Exception as e:
            logger.error("Inline job crashed", job_id=job_id, error=str(e), error_type=type(e).__name__)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-process jobs (used on shutdown)."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Inline jobs still running at shutdown", count=len(pending))

    async def consume(self, stop: asyncio.Event | None = None, block_seconds: int = 5) -> int:
        """Pop job ids from Redis and run them until `stop` is set. Returns jobs handled."""
        stop = stop or asyncio.Event()
        handled = 0
        client = await self.cache.get_client()

        while not stop.is_set():
            item = await client.brpop(self.queue_name, timeout=block_seconds)
            if item is None:
                continue

            _, raw = item
            try:
                job_id = json.loads(raw)["job_id"]
            except (ValueError, KeyError, TypeError):
                logger.error("Dropping malformed queue message", message=str(raw)[:200])
                continue

            try:
                await self.runner.run(job_id)
            except Exception as e:
                logger.error("Job run failed", job_id=job_id, error=str(e), error_type=type(e).__name__)
            handled += 1

        return handled

    async def fail_stale_jobs(self) -> int:
        cutoff = utcnow() - timedelta(seconds=settings.AI_GROUPING_STALE_AFTER_SECONDS)
        return await self.runner.job_repository.fail_stale(cutoff)


job_queue = JobQueue()


async def run_ai_grouping_worker() -> None:
    """Worker entry point: connect, fail abandoned jobs, then consume the Redis queue."""
    await db_pool.initialize()
    await cache_store.initialize()
    queue = JobQueue(backend=BACKEND_REDIS)

    try:
        stale = await queue.fail_stale_jobs()
        logger.info("AI grouping worker started", queue=queue.queue_name, stale_jobs_failed=stale)
        await queue.consume()
    finally:
        await cache_store.close()
        await db_pool.close()
