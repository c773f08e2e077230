"""In-memory stand-ins for the cache, repositories and providers used across the suite."""

import asyncio
import copy
import fnmatch
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.db.helpers import DatabaseError
from app.features.contact_intelligence.domain.models import (
    BackgroundJob,
    Contact,
    ContactLocation,
    Group,
    GroupSaveResult,
    JobStatus,
    UsageRecord,
    UsageTotals,
    utcnow,
)
from app.features.contact_intelligence.domain.subscriptions import RunType, SubscriptionTier
from app.features.contact_intelligence.providers.openai_service import ChatResult, EmbeddingResult
from app.features.contact_intelligence.providers.pinecone_client import RerankScore, VectorMatch

USER_ID = "user-123"


# ---------------------------------------------------------------------------
# Cache / Redis
# ---------------------------------------------------------------------------


class FakeRedisClient:
    """The handful of raw Redis list commands the job queue uses."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}

    async def lpush(self, key: str, value: str) -> int:
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    async def brpop(self, key: str, timeout: int = 0):
        items = self.lists.get(key)
        if not items:
            await asyncio.sleep(0)
            return None
        return key, items.pop()


class FakeCache:
    """In-memory stand-in for RedisCacheStore (values round-trip through JSON)."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.client = FakeRedisClient()

    async def get_client(self):
        return self.client

    async def ping(self) -> bool:
        return True

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        self.store[key] = json.dumps(value)
        self.ttls[key] = ttl_seconds
        return True

    async def get(self, key: str, parse_json: bool = True) -> Any | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        return json.loads(raw) if parse_json else raw

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        keys = [key for key in self.store if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            await self.delete(key)
        return len(keys)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class FakeSubscriptionRepository:
    def __init__(self, tiers: dict[str, SubscriptionTier] | None = None):
        self.tiers = dict(tiers or {})
        self.error: Exception | None = None

    async def get_tier(self, user_id: str) -> SubscriptionTier:
        if self.error:
            raise self.error
        return self.tiers.get(user_id, SubscriptionTier.BASE)


class FakeUsageRepository:
    def __init__(self):
        self.records: list[UsageRecord] = []
        self.error: Exception | None = None
        self.insert_error: Exception | None = None

    async def insert(self, record: UsageRecord) -> None:
        if self.insert_error:
            raise self.insert_error
        self.records.append(record)

    def _month(self, user_id: str, since: datetime) -> list[UsageRecord]:
        return [r for r in self.records if r.user_id == user_id and r.created_at >= since]

    async def monthly_totals(self, user_id: str, since: datetime) -> UsageTotals:
        if self.error:
            raise self.error
        records = self._month(user_id, since)
        return UsageTotals(
            total_cost=sum(r.cost for r in records),
            runs_ai=sum(1 for r in records if r.billable_run and r.run_type == RunType.AI),
            runs_api=sum(1 for r in records if r.billable_run and r.run_type == RunType.API),
        )

    async def monthly_breakdown(self, user_id: str, since: datetime) -> dict[str, Any]:
        if self.error:
            raise self.error
        breakdown: dict[str, dict[str, Any]] = {"by_feature": {}, "by_provider": {}}
        for record in self._month(user_id, since):
            for bucket, key in (
                ("by_feature", record.feature),
                ("by_provider", record.provider or "unknown"),
            ):
                entry = breakdown[bucket].setdefault(key, {"cost": 0.0, "calls": 0, "runs": 0})
                entry["cost"] += record.cost
                entry["calls"] += 1
                entry["runs"] += 1 if record.billable_run else 0
        return breakdown

    def add(
        self,
        user_id: str,
        cost: float,
        run_type: RunType = RunType.AI,
        billable_run: bool = True,
        feature: str = "seed",
        provider: str | None = "openai",
        created_at: datetime | None = None,
    ) -> None:
        self.records.append(
            UsageRecord(
                user_id=user_id,
                cost=cost,
                model="seed-model",
                feature=feature,
                run_type=run_type,
                billable_run=billable_run,
                provider=provider,
                created_at=created_at or utcnow(),
            )
        )


class FakeContactRepository:
    def __init__(self, contacts: list[Contact] | None = None):
        self.contacts: dict[str, list[Contact]] = {}
        if contacts:
            self.contacts[USER_ID] = list(contacts)
        self.error: Exception | None = None

    async def list_contacts(self, user_id: str, limit: int = 1000) -> list[Contact]:
        if self.error:
            raise self.error
        return list(self.contacts.get(user_id, []))[:limit]

    async def get_contacts_by_ids(self, user_id: str, contact_ids: list[str]) -> dict[str, Contact]:
        wanted = set(contact_ids)
        return {c.id: c for c in self.contacts.get(user_id, []) if c.id in wanted}


class FakeGroupRepository:
    def __init__(self):
        self.groups: dict[str, list[Group]] = {}
        self.error: Exception | None = None

    async def save_generated_groups(self, user_id: str, groups: list[Group]) -> GroupSaveResult:
        if self.error:
            raise self.error
        existing = self.groups.setdefault(user_id, [])
        names = {g.normalized_name for g in existing}
        saved = []
        for group in groups:
            if group.normalized_name in names:
                continue
            names.add(group.normalized_name)
            existing.append(group)
            saved.append(group)
        return GroupSaveResult(
            saved_count=len(saved), duplicates_skipped=len(groups) - len(saved), saved_groups=saved
        )


class FakeJobRepository:
    """Stores copies, and rejects writes to finished jobs or backwards progress like the SQL does."""

    def __init__(self):
        self.jobs: dict[str, BackgroundJob] = {}
        self.saves: list[tuple[str, int]] = []
        self.fail_on_save: Callable[[BackgroundJob], bool] | None = None

    async def create(self, job: BackgroundJob) -> BackgroundJob:
        self.jobs[job.id] = copy.deepcopy(job)
        return job

    async def get(self, job_id: str, user_id: str | None = None) -> BackgroundJob | None:
        job = self.jobs.get(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return copy.deepcopy(job)

    async def save(self, job: BackgroundJob) -> None:
        if self.fail_on_save and self.fail_on_save(job):
            raise DatabaseError("write failed", operation="save_job")
        stored = self.jobs.get(job.id)
        if stored is None or stored.status.terminal or stored.progress > job.progress:
            raise DatabaseError(
                f"Job {job.id} is finished or ahead of this update",
                operation="save_job",
                recoverable=False,
            )
        self.jobs[job.id] = copy.deepcopy(job)
        self.saves.append((job.status.value, job.progress))

    async def claim(self, job_id: str) -> BackgroundJob | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.QUEUED:
            return None
        job.status = JobStatus.PROCESSING
        return copy.deepcopy(job)

    async def fail_stale(self, older_than: datetime) -> int:
        failed = 0
        for job in self.jobs.values():
            if job.status == JobStatus.PROCESSING and job.updated_at < older_than:
                job.fail("Job abandoned by worker")
                failed += 1
        return failed


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class FakeLLM:
    """Returns queued JSON payloads (or raises queued exceptions) in call order."""

    def __init__(self, *responses: Any, model: str = "gpt-4o-mini"):
        self.responses = list(responses)
        self.model = model
        self.calls: list[dict[str, Any]] = []

    async def complete_json(self, system_message, user_message, *, model, max_tokens=None):
        self.calls.append({"system": system_message, "user": user_message, "model": model})
        if not self.responses:
            raise AssertionError("FakeLLM called more often than expected")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = await response()
        return ChatResult(content=response, model=model, input_tokens=1000, output_tokens=500)


class FakeEmbedder:
    def __init__(self, cost: float = 0.000001):
        self.cost = cost
        self.calls: list[str] = []

    async def embed(self, text: str, *, model: str | None = None) -> EmbeddingResult:
        self.calls.append(text)
        return EmbeddingResult(vector=[0.1, 0.2, 0.3], model=model or "emb", cost=self.cost)


class FakeIndex:
    def __init__(self, matches: list[tuple[str, float]] | None = None):
        self.matches = [VectorMatch(id=cid, score=score) for cid, score in matches or []]
        self.calls: list[dict[str, Any]] = []

    async def query(self, namespace: str, vector: list[float], top_k: int) -> list[VectorMatch]:
        self.calls.append({"namespace": namespace, "top_k": top_k})
        return self.matches[:top_k]


class FakeRerankClient:
    def __init__(self, scores: list[tuple[int, float]] | None = None, error: Exception | None = None):
        self.scores = scores
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def rerank(self, query, documents, *, model, top_n):
        self.calls.append({"query": query, "documents": documents, "model": model, "top_n": top_n})
        if self.error:
            raise self.error
        scores = self.scores
        if scores is None:
            # Reverse the vector order by default
            count = len(documents)
            scores = [(i, round(0.1 + 0.8 * i / max(count - 1, 1), 4)) for i in range(count)]
        ranked = sorted((RerankScore(index=i, score=s) for i, s in scores), key=lambda r: -r.score)
        return ranked[:top_n]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

BASE_TIME = datetime(2026, 3, 14, 9, 0, tzinfo=UTC)


def make_contact(
    cid: str,
    name: str | None = None,
    company: str | None = None,
    email: str | None = None,
    minutes: float | None = None,
    lat: float | None = None,
    lng: float | None = None,
    **extra: Any,
) -> Contact:
    return Contact(
        id=cid,
        name=name or f"Contact {cid}",
        company=company,
        email=email,
        submitted_at=BASE_TIME + timedelta(minutes=minutes) if minutes is not None else None,
        location=ContactLocation(latitude=lat, longitude=lng) if lat is not None else None,
        **extra,
    )
