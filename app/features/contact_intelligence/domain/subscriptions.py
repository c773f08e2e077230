"""
Subscription tiers, their monthly limits and the features each tier unlocks.

A limit of -1 means unlimited.
"""

from dataclasses import dataclass
from enum import Enum

UNLIMITED = -1


class SubscriptionTier(str, Enum):
    BASE = "base"
    PRO = "pro"
    PREMIUM = "premium"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)

    def at_least(self, other: "SubscriptionTier") -> bool:
        return self.rank >= other.rank


TIER_ORDER: tuple[SubscriptionTier, ...] = (
    SubscriptionTier.BASE,
    SubscriptionTier.PRO,
    SubscriptionTier.PREMIUM,
    SubscriptionTier.BUSINESS,
    SubscriptionTier.ENTERPRISE,
)


class RunType(str, Enum):
    """Quota axis: AI runs (LLM/embedding work) vs plain API runs (rerank, maps)."""

    AI = "ai"
    API = "api"


@dataclass(frozen=True, slots=True)
class TierLimits:
    max_cost: float
    max_runs_ai: int
    max_runs_api: int

    def runs_limit(self, run_type: RunType) -> int:
        return self.max_runs_ai if run_type == RunType.AI else self.max_runs_api

    @property
    def unlimited(self) -> bool:
        return (
            self.max_cost == UNLIMITED
            and self.max_runs_ai == UNLIMITED
            and self.max_runs_api == UNLIMITED
        )


TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.BASE: TierLimits(max_cost=0.0, max_runs_ai=0, max_runs_api=0),
    SubscriptionTier.PRO: TierLimits(max_cost=1.5, max_runs_ai=0, max_runs_api=50),
    SubscriptionTier.PREMIUM: TierLimits(max_cost=3.0, max_runs_ai=30, max_runs_api=100),
    SubscriptionTier.BUSINESS: TierLimits(max_cost=5.0, max_runs_ai=50, max_runs_api=200),
    SubscriptionTier.ENTERPRISE: TierLimits(
        max_cost=UNLIMITED, max_runs_ai=UNLIMITED, max_runs_api=UNLIMITED
    ),
}


class Feature(str, Enum):
    RULES_GROUPING = "rules_grouping"
    SEMANTIC_SEARCH = "semantic_search"
    RERANK = "rerank"
    RERANK_RICH_DOCUMENTS = "rerank_rich_documents"
    AI_GROUPING = "ai_grouping"
    SMART_COMPANY_MATCHING = "smart_company_matching"
    INDUSTRY_DETECTION = "industry_detection"
    RELATIONSHIP_DETECTION = "relationship_detection"


FEATURE_MIN_TIER: dict[Feature, SubscriptionTier] = {
    Feature.RULES_GROUPING: SubscriptionTier.PRO,
    Feature.SEMANTIC_SEARCH: SubscriptionTier.PREMIUM,
    Feature.RERANK: SubscriptionTier.PREMIUM,
    Feature.RERANK_RICH_DOCUMENTS: SubscriptionTier.BUSINESS,
    Feature.AI_GROUPING: SubscriptionTier.PREMIUM,
    Feature.SMART_COMPANY_MATCHING: SubscriptionTier.PREMIUM,
    Feature.INDUSTRY_DETECTION: SubscriptionTier.BUSINESS,
    Feature.RELATIONSHIP_DETECTION: SubscriptionTier.ENTERPRISE,
}


def parse_tier(value: str | SubscriptionTier | None) -> SubscriptionTier:
    """Map a stored tier name onto the enum; unknown or missing values fall back to base."""
    if isinstance(value, SubscriptionTier):
        return value
    try:
        return SubscriptionTier((value or "").strip().lower())
    except ValueError:
        return SubscriptionTier.BASE


def get_limits(tier: str | SubscriptionTier) -> TierLimits:
    return TIER_LIMITS[parse_tier(tier)]


def has_feature(tier: str | SubscriptionTier, feature: Feature) -> bool:
    return parse_tier(tier).at_least(FEATURE_MIN_TIER[feature])


def required_tier(feature: Feature) -> SubscriptionTier:
    return FEATURE_MIN_TIER[feature]
