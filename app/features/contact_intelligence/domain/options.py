"""
Per-component options with their defaults in one place.

Defaults are read from settings at construction time, so tests can patch
settings before building an options object.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any

from app.config import settings


@dataclass(frozen=True, slots=True)
class ExpansionOptions:
    model: str = field(default_factory=lambda: settings.OPENAI_EXPANSION_MODEL)
    cache_prefix: str = "query_expansion"
    cache_ttl_seconds: int = field(default_factory=lambda: settings.CACHE_DEFAULT_TTL_SECONDS)
    default_language: str = "eng"


@dataclass(frozen=True, slots=True)
class RerankOptions:
    model: str = field(default_factory=lambda: settings.RERANK_DEFAULT_MODEL)
    top_n: int | None = None
    # Drop results scoring below this (None or <= 0 disables filtering); when
    # more than fallback_limit pass, only the best fallback_limit are kept
    min_rerank_score: float | None = None
    fallback_limit: int = field(default_factory=lambda: settings.RERANK_FALLBACK_LIMIT)
    vector_weight: float = field(default_factory=lambda: settings.HYBRID_VECTOR_WEIGHT)
    rerank_weight: float = field(default_factory=lambda: settings.HYBRID_RERANK_WEIGHT)
    # Short factual lookups ("who works at Acme") rank better on name/company/title only
    factual_query: bool = False

    @property
    def uses_threshold(self) -> bool:
        return self.min_rerank_score is not None and self.min_rerank_score > 0


@dataclass(frozen=True, slots=True)
class SearchOptions:
    top_k: int = field(default_factory=lambda: settings.SEARCH_DEFAULT_TOP_K)
    min_vector_score: float | None = None
    enable_rerank: bool = True
    language_hint: str | None = None
    rerank: RerankOptions = field(default_factory=RerankOptions)


@dataclass(frozen=True, slots=True)
class GroupingJobOptions:
    max_groups: int = field(default_factory=lambda: settings.AI_GROUPING_MAX_GROUPS)
    min_contacts: int = field(default_factory=lambda: settings.AI_GROUPING_MIN_CONTACTS)
    ai_timeout_seconds: float = field(default_factory=lambda: settings.AI_GROUPING_TIMEOUT_SECONDS)
    fallback_to_rules: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GroupingJobOptions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known and v is not None})


@dataclass(frozen=True, slots=True)
class RulesGroupingOptions:
    group_by_company: bool = True
    group_by_time: bool = True
    group_by_location: bool = True
    group_by_events: bool = True
    min_group_size: int = 2
    max_groups: int = field(default_factory=lambda: settings.RULES_MAX_GROUPS)
    location_threshold_km: float = field(
        default_factory=lambda: settings.RULES_LOCATION_THRESHOLD_KM
    )
    time_gap_hours: float = 3.0
    event_window_hours: float = 4.0
    save: bool = True
