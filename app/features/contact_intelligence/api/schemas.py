"""
Request/response models for the contact intelligence routes.
"""

from typing import Any

from pydantic import BaseModel, Field

from app.features.contact_intelligence.domain.options import (
    GroupingJobOptions,
    RerankOptions,
    RulesGroupingOptions,
    SearchOptions,
)


class RerankSettingsRequest(BaseModel):
    """Rerank tuning shared by search and the standalone rerank endpoint."""

    model: str | None = Field(default=None, description="Rerank model (default from settings)")
    top_n: int | None = Field(default=None, ge=1, description="Keep only the best N results")
    min_rerank_score: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Drop results scoring below this; 0 disables filtering"
    )
    fallback_limit: int | None = Field(
        default=None, ge=1, description="Most results kept when many pass the threshold"
    )
    factual_query: bool = Field(
        default=False, description="Rerank on name, company and title only"
    )

    def to_options(self) -> RerankOptions:
        overrides = self.model_dump(exclude_none=True)
        return RerankOptions(**overrides)


class SearchRequest(BaseModel):
    """Semantic contact search."""

    query: str = Field(..., min_length=1, max_length=500, description="Natural language query")
    top_k: int | None = Field(default=None, ge=1, le=1000, description="Vector candidates to fetch")
    min_vector_score: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Minimum vector similarity"
    )
    enable_rerank: bool = Field(default=True, description="Rerank candidates when the plan allows")
    language_hint: str | None = Field(default=None, description="Query language, e.g. 'fra'")
    rerank: RerankSettingsRequest = Field(default_factory=RerankSettingsRequest)

    def to_options(self) -> SearchOptions:
        overrides: dict[str, Any] = {
            "enable_rerank": self.enable_rerank,
            "min_vector_score": self.min_vector_score,
            "language_hint": self.language_hint,
            "rerank": self.rerank.to_options(),
        }
        if self.top_k is not None:
            overrides["top_k"] = self.top_k
        return SearchOptions(**overrides)


class SearchResponse(BaseModel):
    """Ranked contacts plus what the pipeline did to get them."""

    results: list[dict[str, Any]] = Field(..., description="Contacts with their scores")
    search_metadata: dict[str, Any] = Field(..., description="Expansion, cost and rerank details")


class RerankContact(BaseModel):
    """A vector-search candidate submitted for reranking."""

    contact: dict[str, Any] = Field(..., description="Contact document (must carry an id)")
    vector_score: float = Field(default=0.0, description="Similarity from the vector search")


class RerankRequest(BaseModel):
    """Rerank an already retrieved candidate set."""

    query: str = Field(..., min_length=1, max_length=500, description="Original user query")
    contacts: list[RerankContact] = Field(..., description="Candidates in vector order")
    options: RerankSettingsRequest = Field(default_factory=RerankSettingsRequest)


class RerankResponse(BaseModel):
    results: list[dict[str, Any]] = Field(..., description="Candidates in rerank order")
    metadata: dict[str, Any] = Field(..., description="Model, cost and filtering details")


class ExpandQueryRequest(BaseModel):
    query: str = Field(..., max_length=500, description="Raw search query")
    language_hint: str | None = Field(default=None, description="Query language, e.g. 'eng'")


class ExpandQueryResponse(BaseModel):
    raw_query: str = Field(..., description="Query as submitted")
    enhanced_query: str = Field(..., description="Query with synonyms and variants")
    language: str = Field(..., description="Detected language code")
    source: str = Field(..., description="dictionary, cache, llm or passthrough")
    degraded: bool = Field(..., description="True when expansion fell back to the raw query")
    cost: float = Field(..., description="USD spent on this expansion")
    reason: str | None = Field(default=None, description="Why expansion degraded, if it did")


class RulesGroupingRequest(BaseModel):
    """Deterministic grouping switches."""

    group_by_company: bool = Field(default=True, description="Group by company name and domain")
    group_by_time: bool = Field(default=True, description="Group contacts added close together")
    group_by_location: bool = Field(default=True, description="Group contacts met nearby")
    group_by_events: bool = Field(default=True, description="Detect networking events")
    min_group_size: int = Field(default=2, ge=2, le=50, description="Smallest group kept")
    max_groups: int | None = Field(default=None, ge=1, le=50, description="Cap on groups returned")
    location_threshold_km: float | None = Field(
        default=None, gt=0, le=50, description="Clustering radius in kilometres"
    )
    save: bool = Field(default=True, description="Persist the generated groups")

    def to_options(self) -> RulesGroupingOptions:
        return RulesGroupingOptions(**self.model_dump(exclude_none=True))


class AIGroupingRequest(BaseModel):
    max_groups: int | None = Field(default=None, ge=1, le=50, description="Cap on saved groups")
    fallback_to_rules: bool = Field(
        default=False, description="Use rules-based groups when AI produces none"
    )

    def to_options(self) -> GroupingJobOptions:
        return GroupingJobOptions.from_dict(self.model_dump(exclude_none=True))


class AIGroupingStartResponse(BaseModel):
    job_id: str = Field(..., description="Poll /contacts/jobs/{job_id} for progress")
    status: str = Field(..., description="Initial job status")
    warnings: list[dict[str, Any]] = Field(
        default_factory=list, description="Usage warnings for the current month"
    )


class CacheClearResponse(BaseModel):
    deleted: int = Field(..., description="Number of cached expansions removed")
