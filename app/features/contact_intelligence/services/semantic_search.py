"""
Semantic search orchestration: expand -> vector search -> optional rerank.

The steps run strictly in order. Expansion degrades to the raw query and
reranking degrades to vector order, each with the reason recorded in
`search_metadata`; only an unaffordable or failed vector search stops the
request.
"""

from dataclasses import dataclass, field
from typing import Any

from app.features.contact_intelligence.domain.errors import (
    BudgetExceededError,
    FeatureGateError,
    ProviderError,
    ValidationError,
)
from app.features.contact_intelligence.domain.models import SearchHit
from app.features.contact_intelligence.domain.options import SearchOptions
from app.features.contact_intelligence.domain.subscriptions import (
    Feature,
    has_feature,
    required_tier,
)
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.features.contact_intelligence.services.query_expansion import query_expansion_service
from app.features.contact_intelligence.services.rerank_service import rerank_service
from app.features.contact_intelligence.services.vector_search import vector_search_service
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class SemanticSearchResult:
    hits: list[SearchHit] = field(default_factory=list)
    search_metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [hit.to_dict() for hit in self.hits],
            "search_metadata": self.search_metadata,
        }


class SemanticSearchService:
    def __init__(self, expansion=None, vector_search=None, reranker=None, gate=None):
        self.expansion = expansion or query_expansion_service
        self.vector_search = vector_search or vector_search_service
        self.reranker = reranker or rerank_service
        self.gate = gate or budget_gate

    async def search(
        self, user_id: str, query: str, options: SearchOptions | None = None
    ) -> SemanticSearchResult:
        options = options or SearchOptions()
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query must not be empty", field="query")

        tier = await self.gate.get_tier(user_id)
        if not has_feature(tier, Feature.SEMANTIC_SEARCH):
            raise FeatureGateError(
                Feature.SEMANTIC_SEARCH.value,
                tier.value,
                required_tier(Feature.SEMANTIC_SEARCH).value,
            )

        expanded = await self.expansion.expand(
            query, user_id=user_id, language_hint=options.language_hint
        )

        vector = await self.vector_search.search(
            user_id,
            expanded.enhanced_query,
            options.top_k,
            min_score=options.min_vector_score,
        )

        hits = vector.hits
        rerank_meta: dict[str, Any] = {"applied": False, "skipped_reason": None}
        rerank_cost = 0.0

        if not options.enable_rerank:
            rerank_meta["skipped_reason"] = "disabled"
        elif not hits:
            rerank_meta["skipped_reason"] = "no_candidates"
        else:
            try:
                reranked = await self.reranker.rerank(
                    user_id, query, hits, options.rerank, tier=tier
                )
            except (FeatureGateError, BudgetExceededError, ProviderError) as e:
                logger.info(
                    "Rerank skipped, keeping vector order",
                    user_id=user_id,
                    reason=e.error_code,
                    error=e.message,
                )
                rerank_meta["skipped_reason"] = e.error_code
                rerank_meta["message"] = e.message
            else:
                hits = reranked.hits
                rerank_cost = reranked.cost
                rerank_meta.update({"applied": True, **reranked.metadata()})

        costs = {
            "expansion": expanded.cost,
            "vector_search": vector.cost,
            "rerank": rerank_cost,
        }
        costs["total"] = round(sum(costs.values()), 6)

        metadata = {
            "query": query,
            "enhanced_query": expanded.enhanced_query,
            "expansion_source": expanded.source.value,
            "expansion_degraded": expanded.degraded,
            "language": expanded.language,
            "tier": tier.value,
            "vector_matches": vector.matches_found,
            "result_count": len(hits),
            "costs": costs,
            "rerank": rerank_meta,
        }

        logger.info(
            "Semantic search completed",
            user_id=user_id,
            expansion_source=expanded.source.value,
            results=len(hits),
            reranked=rerank_meta["applied"],
            total_cost=costs["total"],
        )
        return SemanticSearchResult(hits=hits, search_metadata=metadata)


semantic_search_service = SemanticSearchService()
