"""
Reranker: reorders vector-search candidates with a hosted cross-encoder.

Premium and above only. The call is priced per document sent (top_n does
not change the price), checked against the budget gate first and recorded
after the provider answered. A provider failure is raised as-is; there is
no partial reranking, callers keep the vector order instead.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from app.features.contact_intelligence.domain.errors import FeatureGateError, ValidationError
from app.features.contact_intelligence.domain.field_labels import COMPANY, JOB_TITLE, normalize_label
from app.features.contact_intelligence.domain.models import Contact, SearchHit
from app.features.contact_intelligence.domain.options import RerankOptions
from app.features.contact_intelligence.domain.pricing import rerank_cost
from app.features.contact_intelligence.domain.subscriptions import (
    Feature,
    RunType,
    SubscriptionTier,
    has_feature,
    required_tier,
)
from app.features.contact_intelligence.providers.pinecone_client import rerank_client
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FEATURE = "rerank"

FRENCH_INDICATORS = (
    "expert",
    "spécialiste",
    "ingénieur",
    "directeur",
    "responsable",
    "développeur",
    "consultant",
    "manager",
    "chef",
    "analyste",
    "pour",
    "dans",
    "avec",
    "entreprise",
    "société",
    "équipe",
    "intelligence artificielle",
    "données",
    "numérique",
    "digital",
)


def detect_query_language(query: str) -> str:
    """Two or more French indicator words means French; anything else is English."""
    lowered = query.lower()
    matches = sum(1 for word in FRENCH_INDICATORS if word in lowered)
    return "fra" if matches >= 2 else "eng"


def _labelled_value(contact: Contact, canonical: str) -> str | None:
    for detail in [*contact.details, *contact.dynamic_fields]:
        if detail.value and normalize_label(detail.label) == canonical:
            return detail.value
    return None


def extract_company(contact: Contact) -> str | None:
    return contact.company or _labelled_value(contact, COMPANY)


def extract_job_title(contact: Contact) -> str | None:
    return contact.job_title or _labelled_value(contact, JOB_TITLE)


def build_rerank_document(contact: Contact, rich: bool, factual: bool = False) -> str:
    """
    Text sent to the cross-encoder for one contact.

    Factual mode is a one-line name/company/title summary. Otherwise the
    base fields are always present and notes, message, website, event,
    location and custom fields are added only when `rich` is set.
    """
    company = extract_company(contact)
    job_title = extract_job_title(contact)

    if factual:
        parts = []
        if contact.name:
            parts.append(f"Name: {contact.name}")
        if company:
            parts.append(f"Company: {company}")
        if job_title:
            parts.append(f"Title: {job_title}")
        return ". ".join(parts) + "." if parts else ""

    lines = [
        f"[Contact Name]: {contact.name or 'Unknown'}",
        f"[Email]: {contact.email or 'No email'}",
        f"[Company]: {company or 'No company'}",
    ]
    if job_title:
        lines.append(f"[Job Title]: {job_title}")

    if rich:
        for detail in contact.dynamic_fields:
            if detail.label and detail.value:
                lines.append(f"[{detail.label}]: {detail.value}")
        if contact.notes:
            lines.append(f"[Notes]: {contact.notes}")
        if contact.message:
            lines.append(f"[Message]: {contact.message}")
        if contact.website:
            lines.append(f"[Website]: {contact.website}")

        event = contact.event_info
        if event:
            for label, value in (
                ("Event", event.event_name),
                ("Event Type", event.event_type),
                ("Venue", event.venue),
                ("Event Dates", event.event_dates),
            ):
                if value:
                    lines.append(f"[{label}]: {value}")

        if contact.location and contact.location.describe():
            lines.append(f"[Location]: {contact.location.describe()}")

    return "\n".join(lines)


@dataclass(slots=True)
class RerankResult:
    hits: list[SearchHit] = field(default_factory=list)
    cost: float = 0.0
    model: str | None = None
    query_language: str | None = None
    documents_reranked: int = 0
    filtering: dict[str, Any] | None = None

    def metadata(self) -> dict[str, Any]:
        return {
            "cost": self.cost,
            "model": self.model,
            "query_language": self.query_language,
            "documents_reranked": self.documents_reranked,
            "filtering": self.filtering,
        }


class RerankService:
    def __init__(self, client=None, gate=None):
        self.client = client or rerank_client
        self.gate = gate or budget_gate

    async def rerank(
        self,
        user_id: str,
        query: str,
        hits: list[SearchHit],
        options: RerankOptions | None = None,
        *,
        tier: SubscriptionTier | None = None,
    ) -> RerankResult:
        options = options or RerankOptions()

        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query must be a non-empty string", field="query")
        if not isinstance(hits, list):
            raise ValidationError("Contacts must be a list", field="contacts")
        if not hits:
            return RerankResult(model=options.model)
        if options.top_n is not None and options.top_n < 1:
            raise ValidationError("top_n must be at least 1", field="top_n")

        tier = tier or await self.gate.get_tier(user_id)
        if not has_feature(tier, Feature.RERANK):
            raise FeatureGateError(
                FEATURE, tier.value, required_tier(Feature.RERANK).value
            )

        document_count = len(hits)
        estimated_cost = rerank_cost(options.model, document_count)
        await self.gate.require(user_id, estimated_cost, required_runs=1, run_type=RunType.API)

        rich = has_feature(tier, Feature.RERANK_RICH_DOCUMENTS) and not options.factual_query
        documents = [
            build_rerank_document(hit.contact, rich=rich, factual=options.factual_query)
            for hit in hits
        ]
        query_language = detect_query_language(query)

        if options.uses_threshold:
            top_n = document_count
        else:
            top_n = min(options.top_n or document_count, document_count)

        scores = await self.client.rerank(query, documents, model=options.model, top_n=top_n)

        cost = rerank_cost(options.model, document_count)
        await self.gate.record_usage(
            user_id,
            cost,
            options.model,
            FEATURE,
            {
                "documents": document_count,
                "top_n": top_n,
                "query_language": query_language,
                "rich_documents": rich,
            },
            RunType.API,
            provider="pinecone",
        )

        ranked = []
        for score in scores:
            if not 0 <= score.index < document_count:
                logger.warning("Rerank result index out of range", index=score.index)
                continue
            hit = hits[score.index]
            ranked.append(
                replace(
                    hit,
                    rerank_score=score.score,
                    rerank_rank=len(ranked) + 1,
                    original_vector_rank=score.index + 1,
                    hybrid_score=(
                        hit.vector_score * options.vector_weight
                        + score.score * options.rerank_weight
                    ),
                    rerank_model=options.model,
                    query_language=query_language,
                )
            )

        filtering = None
        if options.uses_threshold:
            ranked, filtering = self._apply_threshold(ranked, options)

        logger.info(
            "Rerank completed",
            user_id=user_id,
            model=options.model,
            documents=document_count,
            returned=len(ranked),
            cost=cost,
            query_language=query_language,
        )
        return RerankResult(
            hits=ranked,
            cost=cost,
            model=options.model,
            query_language=query_language,
            documents_reranked=document_count,
            filtering=filtering,
        )

    @staticmethod
    def _apply_threshold(
        ranked: list[SearchHit], options: RerankOptions
    ) -> tuple[list[SearchHit], dict[str, Any]]:
        kept = [hit for hit in ranked if hit.rerank_score >= options.min_rerank_score]
        fallback_applied = False

        if not kept:
            logger.warning(
                "No rerank results passed the threshold",
                threshold=options.min_rerank_score,
                raw_count=len(ranked),
            )
        elif len(kept) > options.fallback_limit:
            kept = kept[: options.fallback_limit]
            fallback_applied = True

        for rank, hit in enumerate(kept, start=1):
            hit.rerank_rank = rank

        return kept, {
            "threshold": options.min_rerank_score,
            "raw_count": len(ranked),
            "final_count": len(kept),
            "fallback_applied": fallback_applied,
            "fallback_limit": options.fallback_limit,
        }


rerank_service = RerankService()
