"""
Domain subpackage for the contact intelligence feature.
"""

from .errors import (
    BudgetExceededError,
    ContactIntelligenceError,
    FatalJobError,
    FeatureGateError,
    InvalidJobTransition,
    ProviderError,
    ValidationError,
)
from .models import (
    AffordabilityResult,
    BackgroundJob,
    Contact,
    ContactDetail,
    ContactLocation,
    EventInfo,
    ExpandedQuery,
    ExpansionSource,
    Group,
    GroupSaveResult,
    JobStage,
    JobStatus,
    SearchHit,
    StageStatus,
    UsageRecord,
    UsageTotals,
)
from .subscriptions import Feature, RunType, SubscriptionTier

__all__ = [
    "AffordabilityResult",
    "BackgroundJob",
    "BudgetExceededError",
    "Contact",
    "ContactDetail",
    "ContactIntelligenceError",
    "ContactLocation",
    "EventInfo",
    "ExpandedQuery",
    "ExpansionSource",
    "FatalJobError",
    "Feature",
    "FeatureGateError",
    "Group",
    "GroupSaveResult",
    "InvalidJobTransition",
    "JobStage",
    "JobStatus",
    "ProviderError",
    "RunType",
    "SearchHit",
    "StageStatus",
    "SubscriptionTier",
    "UsageRecord",
    "UsageTotals",
    "ValidationError",
]
