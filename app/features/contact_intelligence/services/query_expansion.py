"""
Query Expansion Engine.

Turns a raw search term into an enhanced query for embedding. Lookup order:
static dictionary (free), cache, then an LLM call whose result is cached.
Expansion never raises to the caller: any failure on the LLM path yields
the raw query back, flagged as degraded, and nothing is cached.
"""

from app.features.contact_intelligence.domain import common_expansions
from app.features.contact_intelligence.domain.models import ExpandedQuery, ExpansionSource
from app.features.contact_intelligence.domain.options import ExpansionOptions
from app.features.contact_intelligence.domain.pricing import expansion_estimate
from app.features.contact_intelligence.domain.subscriptions import RunType
from app.features.contact_intelligence.providers.openai_service import openai_service
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import cache_store, generate_cache_key

logger = get_logger(__name__)

FEATURE = "query_expansion"

EXPANSION_SYSTEM_PROMPT = """You expand search queries used to find people in a contact list.
Given a query, return a comma-separated list containing the original term followed by
synonyms, role variants, abbreviations and closely related job titles or domains.
Keep the language of the query and add English equivalents for non-English queries.
Reply with a JSON object: {"enhanced_query": "<comma-separated terms>", "language": "<ISO 639-3 code>"}"""


def normalize_query(raw_query: str) -> str:
    """Trim, collapse inner whitespace and case-fold."""
    return " ".join((raw_query or "").split()).casefold()


class QueryExpansionService:
    def __init__(self, cache=None, llm=None, gate=None, options: ExpansionOptions | None = None):
        self.cache = cache or cache_store
        self.llm = llm or openai_service
        self.gate = gate or budget_gate
        self.options = options or ExpansionOptions()

    def cache_key(self, normalized_query: str) -> str:
        return generate_cache_key(self.options.cache_prefix, normalized_query)

    async def expand(
        self,
        raw_query: str,
        *,
        user_id: str | None = None,
        language_hint: str | None = None,
    ) -> ExpandedQuery:
        normalized = normalize_query(raw_query)
        default_language = language_hint or self.options.default_language

        if not normalized:
            return ExpandedQuery(
                raw_query=raw_query,
                normalized_query=normalized,
                enhanced_query=raw_query,
                language=default_language,
                source=ExpansionSource.PASSTHROUGH,
                reason="empty_query",
            )

        static = common_expansions.lookup(normalized)
        if static:
            logger.debug("Query expanded from dictionary", query=normalized)
            return ExpandedQuery(
                raw_query=raw_query,
                normalized_query=normalized,
                enhanced_query=static.enhanced_query,
                language=static.language,
                source=ExpansionSource.DICTIONARY,
            )

        key = self.cache_key(normalized)
        cached = await self.cache.get(key)
        if isinstance(cached, dict) and cached.get("enhanced_query"):
            logger.debug("Query expansion cache hit", query=normalized)
            return ExpandedQuery(
                raw_query=raw_query,
                normalized_query=normalized,
                enhanced_query=cached["enhanced_query"],
                language=cached.get("language") or default_language,
                source=ExpansionSource.CACHE,
            )

        return await self._expand_with_llm(raw_query, normalized, key, user_id, default_language)

    async def _expand_with_llm(
        self,
        raw_query: str,
        normalized: str,
        key: str,
        user_id: str | None,
        default_language: str,
    ) -> ExpandedQuery:
        def degraded(reason: str) -> ExpandedQuery:
            return ExpandedQuery(
                raw_query=raw_query,
                normalized_query=normalized,
                enhanced_query=raw_query.strip(),
                language=default_language,
                source=ExpansionSource.PASSTHROUGH,
                degraded=True,
                reason=reason,
            )

        model = self.options.model
        if user_id:
            affordability = await self.gate.can_afford(
                user_id, expansion_estimate(model), required_runs=0, run_type=RunType.AI
            )
            if not affordability.can_afford:
                logger.info(
                    "Query expansion skipped, budget denied",
                    user_id=user_id,
                    reason=affordability.reason,
                )
                return degraded(affordability.reason)

        try:
            result = await self.llm.complete_json(
                EXPANSION_SYSTEM_PROMPT, f"Query: {raw_query.strip()}", model=model, max_tokens=300
            )
            enhanced = result.content.get("enhanced_query")
            if not isinstance(enhanced, str) or not enhanced.strip():
                raise ValueError("LLM response has no enhanced_query")
            language = result.content.get("language") or default_language
        except Exception as e:
            logger.warning(
                "Query expansion failed, using raw query",
                query=normalized,
                error=str(e),
                error_type=type(e).__name__,
            )
            return degraded("expansion_failed")

        enhanced = enhanced.strip()
        await self.cache.set(
            key, {"enhanced_query": enhanced, "language": language}, self.options.cache_ttl_seconds
        )

        cost = result.cost
        if user_id:
            await self.gate.record_usage(
                user_id,
                cost,
                result.model,
                FEATURE,
                {"query": normalized, "input_tokens": result.input_tokens, "output_tokens": result.output_tokens},
                RunType.AI,
                provider="openai",
                billable_run=False,
            )

        logger.info("Query expanded with LLM", query=normalized, language=language, cost=cost)
        return ExpandedQuery(
            raw_query=raw_query,
            normalized_query=normalized,
            enhanced_query=enhanced,
            language=language,
            source=ExpansionSource.LLM,
            cost=cost,
        )

    async def clear_cache(self) -> int:
        """Drop every cached expansion; returns how many keys were removed."""
        removed = await self.cache.clear_pattern(f"{self.options.cache_prefix}:*")
        logger.info("Query expansion cache cleared", removed=removed)
        return removed


query_expansion_service = QueryExpansionService()
