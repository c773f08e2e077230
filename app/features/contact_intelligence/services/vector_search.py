"""
Vector Similarity Search.

Embeds the enhanced query, queries the user's namespace in the vector index
and joins the matches back to contact records. The whole step is priced up
front (embedding + one index query) and denied before embedding anything
when the user cannot afford it.
"""

from dataclasses import dataclass, field

from app.config import settings
from app.features.contact_intelligence.domain.errors import BudgetExceededError, ValidationError
from app.features.contact_intelligence.domain.models import SearchHit
from app.features.contact_intelligence.domain.pricing import VECTOR_QUERY_COST, embedding_cost
from app.features.contact_intelligence.domain.subscriptions import RunType
from app.features.contact_intelligence.providers.openai_service import openai_service
from app.features.contact_intelligence.providers.pinecone_client import (
    user_namespace,
    vector_index,
)
from app.features.contact_intelligence.repository import ContactRepository
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FEATURE = "vector_search"
MAX_TOP_K = 1000


@dataclass(slots=True)
class VectorSearchResult:
    hits: list[SearchHit] = field(default_factory=list)
    cost: float = 0.0
    matches_found: int = 0


class VectorSearchService:
    def __init__(self, embedder=None, index=None, contact_repository=ContactRepository, gate=None):
        self.embedder = embedder or openai_service
        self.index = index or vector_index
        self.contact_repository = contact_repository
        self.gate = gate or budget_gate

    async def search(
        self,
        user_id: str,
        enhanced_query: str,
        top_k: int | None = None,
        *,
        min_score: float | None = None,
    ) -> VectorSearchResult:
        if not enhanced_query or not enhanced_query.strip():
            raise ValidationError("Search query must not be empty", field="query")
        if top_k is None:
            top_k = settings.SEARCH_DEFAULT_TOP_K
        if not 1 <= top_k <= MAX_TOP_K:
            raise ValidationError(f"top_k must be between 1 and {MAX_TOP_K}", field="top_k")

        model = settings.OPENAI_EMBEDDING_MODEL
        estimated_cost = embedding_cost(model, enhanced_query) + VECTOR_QUERY_COST
        affordability = await self.gate.can_afford(
            user_id, estimated_cost, required_runs=0, run_type=RunType.API
        )
        if not affordability.can_afford:
            logger.info("Vector search denied", user_id=user_id, reason=affordability.reason)
            raise BudgetExceededError("insufficient budget", affordability=affordability)

        embedding = await self.embedder.embed(enhanced_query, model=model)
        matches = await self.index.query(user_namespace(user_id), embedding.vector, top_k)
        if min_score is not None:
            matches = [match for match in matches if match.score >= min_score]

        contacts = await self.contact_repository.get_contacts_by_ids(
            user_id, [match.id for match in matches]
        )

        hits = []
        for match in matches:
            contact = contacts.get(match.id)
            if contact is None:
                # Index entry outlived the contact
                continue
            hits.append(
                SearchHit(
                    contact=contact,
                    vector_score=match.score,
                    original_vector_rank=len(hits) + 1,
                )
            )

        cost = embedding.cost + VECTOR_QUERY_COST
        await self.gate.record_usage(
            user_id,
            cost,
            model,
            FEATURE,
            {"top_k": top_k, "matches": len(matches), "returned": len(hits)},
            RunType.API,
            provider="pinecone",
            billable_run=False,
        )

        logger.info(
            "Vector search completed",
            user_id=user_id,
            matches=len(matches),
            returned=len(hits),
            cost=cost,
        )
        return VectorSearchResult(hits=hits, cost=cost, matches_found=len(matches))


vector_search_service = VectorSearchService()
