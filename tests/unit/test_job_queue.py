import asyncio
import json
from datetime import timedelta

import pytest

from app.features.contact_intelligence.domain.errors import ProviderError
from app.features.contact_intelligence.domain.models import JobStatus, utcnow
from app.features.contact_intelligence.domain.options import GroupingJobOptions
from app.features.contact_intelligence.jobs.ai_grouping_job import AIGroupingJobRunner
from app.features.contact_intelligence.jobs.queue import JobQueue
from app.features.contact_intelligence.services.grouping_enhancer import EnhancementOutcome
from tests.fakes import USER_ID, FakeContactRepository, make_contact


class NoGroupsEnhancer:
    async def enhance(self, user_id, contacts, tier, sink):
        return EnhancementOutcome()


@pytest.fixture
def runner(job_repo, group_repo, gate):
    contacts = FakeContactRepository([make_contact(f"c{i}", company="Acme") for i in range(6)])
    return AIGroupingJobRunner(job_repo, contacts, group_repo, NoGroupsEnhancer(), gate)


def test_unknown_backend_is_rejected(runner):
    with pytest.raises(ValueError):
        JobQueue(backend="kafka", runner=runner)


@pytest.mark.asyncio
async def test_inline_start_returns_queued_job_then_runs_it(runner, job_repo, fake_cache):
    queue = JobQueue(backend="inline", runner=runner, cache=fake_cache)

    job = await queue.start(USER_ID, GroupingJobOptions())

    assert job.status == JobStatus.QUEUED
    assert queue.pending == 1

    await queue.drain(timeout=5)

    assert queue.pending == 0
    stored = await job_repo.get(job.id)
    assert stored.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_redis_backend_pushes_and_consumes(runner, job_repo, fake_cache):
    queue = JobQueue(backend="redis", runner=runner, cache=fake_cache, queue_name="jobs:test")

    job = await queue.start(USER_ID, GroupingJobOptions())
    assert json.loads(fake_cache.client.lists["jobs:test"][0]) == {"job_id": job.id}

    # Same id delivered twice plus a malformed message
    await fake_cache.client.lpush("jobs:test", "not json")
    await fake_cache.client.lpush("jobs:test", json.dumps({"job_id": job.id}))

    stop = asyncio.Event()

    async def stop_when_drained():
        while fake_cache.client.lists["jobs:test"]:
            await asyncio.sleep(0)
        stop.set()

    handled, _ = await asyncio.gather(queue.consume(stop, block_seconds=0), stop_when_drained())

    assert handled == 2
    stored = await job_repo.get(job.id)
    assert stored.status == JobStatus.COMPLETED
    # Claimed once: one save per checkpoint
    assert [progress for _, progress in job_repo.saves] == [5, 15, 85, 95, 100]


@pytest.mark.asyncio
async def test_enqueue_failure_fails_the_job(runner, job_repo, fake_cache):
    class BrokenCache:
        async def get_client(self):
            raise ConnectionError("redis down")

    queue = JobQueue(backend="redis", runner=runner, cache=BrokenCache())

    with pytest.raises(ProviderError):
        await queue.start(USER_ID, GroupingJobOptions())

    [stored] = job_repo.jobs.values()
    assert stored.status == JobStatus.FAILED
    assert "Could not enqueue job" in stored.error


@pytest.mark.asyncio
async def test_fail_stale_jobs(runner, job_repo, fake_cache):
    queue = JobQueue(backend="inline", runner=runner, cache=fake_cache)
    stale = await runner.create_job(USER_ID, GroupingJobOptions())
    fresh = await runner.create_job(USER_ID, GroupingJobOptions())
    for job_id, age in ((stale.id, timedelta(hours=2)), (fresh.id, timedelta(minutes=1))):
        job_repo.jobs[job_id].status = JobStatus.PROCESSING
        job_repo.jobs[job_id].updated_at = utcnow() - age

    assert await queue.fail_stale_jobs() == 1
    assert job_repo.jobs[stale.id].status == JobStatus.FAILED
    assert job_repo.jobs[fresh.id].status == JobStatus.PROCESSING
