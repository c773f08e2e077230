"""
Error taxonomy for the contact search and grouping pipeline.

Each error carries the HTTP status the API layer maps it to and a
`recoverable` flag in the same spirit as DatabaseError: recoverable errors
may succeed if retried later (provider outage), the rest will not.
"""

from typing import Any


class ContactIntelligenceError(Exception):
    """Base exception for the feature."""

    status_code = 500
    error_code = "contact_intelligence_error"

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class ValidationError(ContactIntelligenceError):
    """Malformed input, rejected before any external call."""

    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, recoverable=False)
        self.field = field

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.field:
            detail["field"] = self.field
        return detail


class FeatureGateError(ContactIntelligenceError):
    """Subscription tier too low for the requested capability."""

    status_code = 403
    error_code = "feature_not_available"

    def __init__(self, feature: str, current_tier: str, required_tier: str):
        super().__init__(
            f"'{feature}' requires the {required_tier} plan or higher "
            f"(current plan: {current_tier}). Upgrade to unlock it.",
            recoverable=False,
        )
        self.feature = feature
        self.current_tier = current_tier
        self.required_tier = required_tier

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail.update(
            {
                "feature": self.feature,
                "current_tier": self.current_tier,
                "required_tier": self.required_tier,
                "upgrade_required": True,
            }
        )
        return detail


class BudgetExceededError(ContactIntelligenceError):
    """Affordability check denied a paid operation."""

    status_code = 402
    error_code = "budget_exceeded"

    def __init__(self, message: str, affordability: Any = None):
        super().__init__(message, recoverable=False)
        self.affordability = affordability

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.affordability is not None:
            detail.update(self.affordability.to_dict())
        return detail


class ProviderError(ContactIntelligenceError):
    """External API (LLM, embeddings, vector index, rerank) unavailable or refusing us."""

    status_code = 503
    error_code = "provider_unavailable"

    def __init__(self, message: str, provider: str, status: int | None = None):
        super().__init__(message, recoverable=True)
        self.provider = provider
        self.status = status

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail["provider"] = self.provider
        return detail


class FatalJobError(ContactIntelligenceError):
    """Unexpected failure inside a background job outside the guarded AI stage."""

    error_code = "job_failed"

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message, recoverable=False)
        self.job_id = job_id


class InvalidJobTransition(ContactIntelligenceError):
    """A job update would regress status or progress."""

    error_code = "invalid_job_transition"
