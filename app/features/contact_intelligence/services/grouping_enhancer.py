"""
AI grouping enhancer.

Runs the LLM grouping features the user's tier unlocks:

- smart company matching (premium+): merges company-name variants
- industry detection (business+, at least 10 contacts)
- relationship detection (enterprise, at least 5 contacts)

Groups are appended to a caller-owned list as soon as each feature returns,
so whatever was produced survives a later failure or the caller's timeout.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.features.contact_intelligence.domain.errors import BudgetExceededError, ProviderError
from app.features.contact_intelligence.domain.models import Contact, Group, new_group_id
from app.features.contact_intelligence.domain.pricing import grouping_feature_estimate
from app.features.contact_intelligence.domain.subscriptions import (
    Feature,
    RunType,
    SubscriptionTier,
    has_feature,
)
from app.features.contact_intelligence.providers.openai_service import ChatResult, openai_service
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.features.contact_intelligence.services.rerank_service import extract_job_title
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

USAGE_FEATURE = "ai_grouping"
INDUSTRY_MIN_CONTACTS = 10
RELATIONSHIP_MIN_CONTACTS = 5
RELATIONSHIP_MAX_CONTACTS = 20
COMPANY_MATCHING_MAX_COMPANIES = 50

SYSTEM_PROMPT = "You group business contacts. Reply with a single JSON object and nothing else."

COMPANY_PROMPT = """Analyze these company names and group variants of the same company together.

Company names: {companies}

Rules:
- Group obvious variants (Microsoft Corp, Microsoft Inc, Microsoft)
- Group subsidiaries with parents where obvious (YouTube with Google/Alphabet)
- Keep separate companies separate
- Ignore legal suffixes (Inc, Corp, LLC, Ltd, SAS, SARL) when grouping

Return: {{"groups": [{{"canonical_name": "Microsoft", "variants": ["Microsoft Corp", "Microsoft"], "confidence": 0.95}}]}}"""

INDUSTRY_PROMPT = """Group these business contacts by industry, using company names and job titles.
Every group needs at least 2 contacts.

Contacts: {contacts}

Return: {{"industry_groups": [{{"industry": "Technology", "contact_ids": ["id1", "id2"], "reasoning": "..."}}]}}"""

RELATIONSHIP_PROMPT = """Find likely business relationships between these contacts: client/vendor,
same supply chain, complementary services, people working on the same projects, partnerships.

Contacts: {contacts}

Return: {{"relationship_groups": [{{"relationship_type": "client_vendor", "group_name": "...", "contact_ids": ["id1", "id2"], "reasoning": "..."}}]}}"""


@dataclass(slots=True)
class EnhancementOutcome:
    features_ran: dict[str, int] = field(default_factory=dict)
    feature_errors: dict[str, str] = field(default_factory=dict)
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "features_ran": dict(self.features_ran),
            "feature_errors": dict(self.feature_errors),
            "total_cost": round(self.total_cost, 6),
        }


class GroupingEnhancer:
    def __init__(self, llm=None, gate=None, model: str | None = None):
        self.llm = llm or openai_service
        self.gate = gate or budget_gate
        self.model = model or settings.OPENAI_GROUPING_MODEL

    async def enhance(
        self,
        user_id: str,
        contacts: list[Contact],
        tier: SubscriptionTier,
        sink: list[Group],
    ) -> EnhancementOutcome:
        """
        Run every unlocked feature in turn, appending groups to `sink`.

        Raises BudgetExceededError when the next feature cannot be afforded;
        groups already in `sink` are kept. A provider failure in one feature
        is recorded and the next feature still runs.
        """
        outcome = EnhancementOutcome()
        features = []
        if (
            has_feature(tier, Feature.SMART_COMPANY_MATCHING)
            and 2 <= len(_distinct_companies(contacts)) <= COMPANY_MATCHING_MAX_COMPANIES
        ):
            features.append((Feature.SMART_COMPANY_MATCHING, self._company_matching))
        if has_feature(tier, Feature.INDUSTRY_DETECTION) and len(contacts) >= INDUSTRY_MIN_CONTACTS:
            features.append((Feature.INDUSTRY_DETECTION, self._industry_detection))
        if (
            has_feature(tier, Feature.RELATIONSHIP_DETECTION)
            and len(contacts) >= RELATIONSHIP_MIN_CONTACTS
        ):
            features.append((Feature.RELATIONSHIP_DETECTION, self._relationship_detection))

        for feature, run in features:
            # The grouping run is counted once, on the first paid call
            required_runs = 0 if outcome.features_ran else 1
            affordability = await self.gate.can_afford(
                user_id,
                grouping_feature_estimate(self.model, len(contacts)),
                required_runs=required_runs,
                run_type=RunType.AI,
            )
            if not affordability.can_afford:
                raise BudgetExceededError(
                    f"Cannot afford {feature.value}: {affordability.message or affordability.reason}",
                    affordability=affordability,
                )

            try:
                chat, groups = await run(contacts)
            except ProviderError as e:
                logger.warning(
                    "AI grouping feature failed", user_id=user_id, feature=feature.value, error=e.message
                )
                outcome.feature_errors[feature.value] = e.message
                continue

            sink.extend(groups)
            outcome.features_ran[feature.value] = len(groups)
            outcome.total_cost += chat.cost

            await self.gate.record_usage(
                user_id,
                chat.cost,
                chat.model,
                USAGE_FEATURE,
                {
                    "grouping_feature": feature.value,
                    "contacts": len(contacts),
                    "groups_created": len(groups),
                    "input_tokens": chat.input_tokens,
                    "output_tokens": chat.output_tokens,
                },
                RunType.AI,
                provider="openai",
                billable_run=required_runs == 1,
            )

        logger.info(
            "AI grouping enhancement finished",
            user_id=user_id,
            tier=tier.value,
            groups=len(sink),
            **outcome.to_dict(),
        )
        return outcome

    async def _ask(self, prompt: str) -> ChatResult:
        return await self.llm.complete_json(SYSTEM_PROMPT, prompt, model=self.model)

    async def _company_matching(self, contacts: list[Contact]) -> tuple[ChatResult, list[Group]]:
        companies = _distinct_companies(contacts)
        chat = await self._ask(COMPANY_PROMPT.format(companies=json.dumps(companies, ensure_ascii=False)))

        groups = []
        for item in _items(chat.content, "groups"):
            variants = [str(v) for v in item.get("variants") or []]
            canonical = str(item.get("canonical_name") or "").strip()
            if len(variants) < 2 or not canonical:
                continue

            wanted = {v.strip().lower() for v in variants}
            member_ids = [
                c.id for c in contacts if c.company and c.company.strip().lower() in wanted
            ]
            if len(member_ids) < 2:
                continue

            groups.append(
                Group(
                    id=new_group_id("ai_company"),
                    name=f"{canonical} Team",
                    type="ai_company",
                    contact_ids=member_ids,
                    description=f"AI-grouped {canonical} contacts ({', '.join(variants)})",
                    metadata=_ai_metadata(
                        chat,
                        Feature.SMART_COMPANY_MATCHING,
                        confidence=item.get("confidence", 0.8),
                        canonical_name=canonical,
                        variants=variants,
                    ),
                )
            )
        return chat, groups

    async def _industry_detection(self, contacts: list[Contact]) -> tuple[ChatResult, list[Group]]:
        summaries = [
            {"id": c.id, "company": c.company or "Unknown", "title": extract_job_title(c) or ""}
            for c in contacts
        ]
        chat = await self._ask(INDUSTRY_PROMPT.format(contacts=json.dumps(summaries, ensure_ascii=False)))

        known = {c.id for c in contacts}
        groups = []
        for item in _items(chat.content, "industry_groups"):
            industry = str(item.get("industry") or "").strip()
            member_ids = _known_ids(item, known)
            if not industry or len(member_ids) < 2:
                continue
            reasoning = str(item.get("reasoning") or "")
            groups.append(
                Group(
                    id=new_group_id("ai_industry"),
                    name=f"{industry} Professionals",
                    type="ai_industry",
                    contact_ids=member_ids,
                    description=f"AI-grouped {industry} contacts: {reasoning}".rstrip(": "),
                    metadata=_ai_metadata(
                        chat, Feature.INDUSTRY_DETECTION, confidence=0.8, industry=industry, reasoning=reasoning
                    ),
                )
            )
        return chat, groups

    async def _relationship_detection(
        self, contacts: list[Contact]
    ) -> tuple[ChatResult, list[Group]]:
        sample = contacts[:RELATIONSHIP_MAX_CONTACTS]
        data = [
            {
                "id": c.id,
                "name": c.name,
                "company": c.company or "Unknown",
                "title": extract_job_title(c) or "",
                "email": c.email or "",
                "notes": c.message or c.notes or "",
            }
            for c in sample
        ]
        chat = await self._ask(RELATIONSHIP_PROMPT.format(contacts=json.dumps(data, ensure_ascii=False)))

        known = {c.id for c in sample}
        groups = []
        for item in _items(chat.content, "relationship_groups"):
            name = str(item.get("group_name") or "").strip()
            member_ids = _known_ids(item, known)
            if not name or len(member_ids) < 2:
                continue
            reasoning = str(item.get("reasoning") or "")
            groups.append(
                Group(
                    id=new_group_id("ai_relationship"),
                    name=name,
                    type="ai_relationship",
                    contact_ids=member_ids,
                    description=f"AI-detected relationship: {reasoning}",
                    metadata=_ai_metadata(
                        chat,
                        Feature.RELATIONSHIP_DETECTION,
                        confidence=0.7,
                        relationship_type=item.get("relationship_type"),
                        reasoning=reasoning,
                    ),
                )
            )
        return chat, groups


def _distinct_companies(contacts: list[Contact]) -> list[str]:
    return sorted({c.company.strip() for c in contacts if c.company and c.company.strip()})


def _items(content: dict[str, Any], key: str) -> list[dict[str, Any]]:
    items = content.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _known_ids(item: dict[str, Any], known: set[str]) -> list[str]:
    return [str(cid) for cid in item.get("contact_ids") or [] if str(cid) in known]


def _ai_metadata(chat: ChatResult, feature: Feature, **extra: Any) -> dict[str, Any]:
    return {"ai_generated": True, "ai_model": chat.model, "feature": feature.value, **extra}


grouping_enhancer = GroupingEnhancer()
