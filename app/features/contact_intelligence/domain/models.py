"""
Domain models for the contact intelligence feature.

Plain dataclasses shared by repositories, services, jobs and the API layer.
The only behaviour living here is the invariant-keeping kind: group contact
ids are de-duplicated on construction and background jobs refuse to move
backwards.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from app.features.contact_intelligence.domain.errors import InvalidJobTransition
from app.features.contact_intelligence.domain.subscriptions import RunType


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Contacts (read-only input)
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ContactDetail:
    label: str
    value: str


@dataclass(slots=True)
class ContactLocation:
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def describe(self) -> str:
        return ", ".join(
            part for part in (self.address, self.city, self.state, self.country) if part
        )


@dataclass(slots=True)
class EventInfo:
    event_name: str | None = None
    event_type: str | None = None
    venue: str | None = None
    event_dates: str | None = None


@dataclass(slots=True)
class Contact:
    id: str
    name: str | None = None
    email: str | None = None
    company: str | None = None
    job_title: str | None = None
    website: str | None = None
    notes: str | None = None
    message: str | None = None
    location: ContactLocation | None = None
    details: list[ContactDetail] = field(default_factory=list)
    dynamic_fields: list[ContactDetail] = field(default_factory=list)
    event_info: EventInfo | None = None
    submitted_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        location = data.get("location")
        event_info = data.get("event_info")
        return cls(
            id=str(data["id"]),
            name=data.get("name"),
            email=data.get("email"),
            company=data.get("company"),
            job_title=data.get("job_title"),
            website=data.get("website"),
            notes=data.get("notes"),
            message=data.get("message"),
            location=ContactLocation(**location) if isinstance(location, dict) else None,
            details=[
                ContactDetail(label=d.get("label", ""), value=d.get("value", ""))
                for d in data.get("details") or []
            ],
            dynamic_fields=[
                ContactDetail(label=d.get("label", ""), value=d.get("value", ""))
                for d in data.get("dynamic_fields") or []
            ],
            event_info=EventInfo(**event_info) if isinstance(event_info, dict) else None,
            submitted_at=_parse_datetime(data.get("submitted_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["submitted_at"] = _iso(self.submitted_at)
        return data


@dataclass(slots=True)
class SearchHit:
    """A contact plus the scores the search pipeline attached to it."""

    contact: Contact
    vector_score: float
    original_vector_rank: int
    rerank_score: float | None = None
    rerank_rank: int | None = None
    hybrid_score: float | None = None
    rerank_model: str | None = None
    query_language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.contact.to_dict()
        data.update(
            {
                "vector_score": self.vector_score,
                "original_vector_rank": self.original_vector_rank,
                "rerank_score": self.rerank_score,
                "rerank_rank": self.rerank_rank,
                "hybrid_score": self.hybrid_score,
                "rerank_model": self.rerank_model,
                "query_language": self.query_language,
            }
        )
        return data


# ---------------------------------------------------------------------------
# Query expansion
# ---------------------------------------------------------------------------


class ExpansionSource(str, Enum):
    DICTIONARY = "dictionary"
    CACHE = "cache"
    LLM = "llm"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True, slots=True)
class ExpandedQuery:
    raw_query: str
    normalized_query: str
    enhanced_query: str
    language: str
    source: ExpansionSource
    degraded: bool = False
    cost: float = 0.0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_query": self.raw_query,
            "enhanced_query": self.enhanced_query,
            "language": self.language,
            "source": self.source.value,
            "degraded": self.degraded,
            "cost": self.cost,
            "reason": self.reason,
        }


# ---------------------------------------------------------------------------
# Usage and budget
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class UsageRecord:
    user_id: str
    cost: float
    model: str
    feature: str
    run_type: RunType
    billable_run: bool = True
    provider: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class UsageTotals:
    total_cost: float = 0.0
    runs_ai: int = 0
    runs_api: int = 0

    def runs(self, run_type: RunType) -> int:
        return self.runs_ai if run_type == RunType.AI else self.runs_api


@dataclass(frozen=True, slots=True)
class AffordabilityResult:
    can_afford: bool
    reason: str
    tier: str
    remaining_budget: float | None
    remaining_runs: int | None
    estimated_cost: float
    required_runs: int
    run_type: RunType
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_afford": self.can_afford,
            "reason": self.reason,
            "tier": self.tier,
            "remaining_budget": self.remaining_budget,
            "remaining_runs": self.remaining_runs,
            "estimated_cost": self.estimated_cost,
            "required_runs": self.required_runs,
            "run_type": self.run_type.value,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


def new_group_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def normalize_group_name(name: str) -> str:
    return (name or "").strip().lower()


@dataclass(slots=True)
class Group:
    id: str
    name: str
    type: str
    contact_ids: list[str]
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.contact_ids = list(dict.fromkeys(str(cid) for cid in self.contact_ids if cid))

    @property
    def normalized_name(self) -> str:
        return normalize_group_name(self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "contact_ids": list(self.contact_ids),
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class GroupSaveResult:
    saved_count: int
    duplicates_skipped: int
    saved_groups: list[Group]


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_JOB_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


_STAGE_STATUS_RANK = {
    StageStatus.PENDING: 0,
    StageStatus.IN_PROGRESS: 1,
    StageStatus.COMPLETED: 2,
}


@dataclass(slots=True)
class JobStage:
    name: str
    status: StageStatus = StageStatus.PENDING
    progress: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "progress": self.progress}


@dataclass(slots=True)
class BackgroundJob:
    id: str
    user_id: str
    job_type: str
    stages: list[JobStage]
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    options: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    stage_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    @classmethod
    def create(
        cls, user_id: str, job_type: str, stage_names: list[str], options: dict[str, Any]
    ) -> "BackgroundJob":
        job_id = f"{job_type}_{user_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        return cls(
            id=job_id,
            user_id=user_id,
            job_type=job_type,
            stages=[JobStage(name=name) for name in stage_names],
            options=dict(options),
        )

    def stage(self, name: str) -> JobStage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def _set_status(self, status: JobStatus) -> None:
        if self.status == status:
            return
        if self.status.terminal or _JOB_STATUS_RANK[status] < _JOB_STATUS_RANK[self.status]:
            raise InvalidJobTransition(
                f"Job {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def _set_progress(self, progress: int) -> None:
        progress = max(0, min(100, int(progress)))
        if progress < self.progress:
            raise InvalidJobTransition(
                f"Job {self.id} progress cannot decrease ({self.progress} -> {progress})"
            )
        self.progress = progress

    def _set_stage_status(self, name: str, status: StageStatus) -> None:
        stage = self.stage(name)
        if _STAGE_STATUS_RANK[status] < _STAGE_STATUS_RANK[stage.status]:
            raise InvalidJobTransition(
                f"Stage '{name}' cannot move from {stage.status.value} to {status.value}"
            )
        stage.status = status
        if status == StageStatus.COMPLETED:
            stage.progress = 100

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def start_stage(self, name: str, progress: int) -> None:
        self._set_status(JobStatus.PROCESSING)
        self._set_stage_status(name, StageStatus.IN_PROGRESS)
        self._set_progress(progress)
        self._touch()

    def complete_stage(self, name: str, progress: int | None = None) -> None:
        self._set_stage_status(name, StageStatus.COMPLETED)
        if progress is not None:
            self._set_progress(progress)
        self._touch()

    def record_stage_error(self, key: str, message: str) -> None:
        self.stage_errors[key] = message
        self._touch()

    def complete(self, result: dict[str, Any]) -> None:
        for stage in self.stages:
            if stage.status == StageStatus.IN_PROGRESS:
                stage.status = StageStatus.COMPLETED
                stage.progress = 100
        self._set_status(JobStatus.COMPLETED)
        self._set_progress(100)
        self.result = result
        self.completed_at = utcnow()
        self._touch()

    def fail(self, error: str) -> None:
        self._set_status(JobStatus.FAILED)
        self.error = (error or "unknown error")[:500]
        self.completed_at = utcnow()
        self._touch()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.job_type,
            "status": self.status.value,
            "progress": self.progress,
            "stages": [stage.to_dict() for stage in self.stages],
            "result": self.result,
            "stage_errors": dict(self.stage_errors),
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }
