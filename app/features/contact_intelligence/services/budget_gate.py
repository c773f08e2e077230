"""
Budget/Cost Gate.

Every paid call in the pipeline goes through two steps:

1. `can_afford` before the call: a pure read over this month's usage ledger
   compared with the user's tier limits. It never writes, and if the ledger
   or tier cannot be read it denies (fail closed).
2. `record_usage` after the call succeeded: appends one UsageRecord.

Dollar cost and runs are separate quota axes; runs are further split into
AI runs (LLM work) and API runs (rerank, vector queries).
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.features.contact_intelligence.domain.errors import BudgetExceededError, ValidationError
from app.features.contact_intelligence.domain.models import (
    AffordabilityResult,
    UsageRecord,
    UsageTotals,
    utcnow,
)
from app.features.contact_intelligence.domain.subscriptions import (
    UNLIMITED,
    RunType,
    SubscriptionTier,
    get_limits,
)
from app.features.contact_intelligence.repository import (
    SubscriptionRepository,
    UsageRepository,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REASON_WITHIN_LIMITS = "within_limits"
REASON_UNLIMITED = "unlimited"
REASON_BUDGET_EXCEEDED = "budget_exceeded"
REASON_RUNS_EXCEEDED = "runs_exceeded"
REASON_CHECK_FAILED = "budget_check_failed"


def month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1, tzinfo=UTC)


def _usage_fraction(used: float, limit: float) -> float | None:
    if limit == UNLIMITED or limit <= 0:
        return None
    return used / limit


class BudgetGate:
    """Affordability checks and usage recording against per-tier monthly limits."""

    def __init__(
        self,
        usage_repository=UsageRepository,
        subscription_repository=SubscriptionRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.usage_repository = usage_repository
        self.subscription_repository = subscription_repository
        self.clock = clock

    async def get_tier(self, user_id: str) -> SubscriptionTier:
        return await self.subscription_repository.get_tier(user_id)

    async def can_afford(
        self,
        user_id: str,
        estimated_cost: float,
        required_runs: int = 1,
        run_type: RunType = RunType.AI,
    ) -> AffordabilityResult:
        if estimated_cost < 0:
            raise ValidationError("estimated_cost must be >= 0", field="estimated_cost")
        if required_runs < 0:
            raise ValidationError("required_runs must be >= 0", field="required_runs")

        try:
            tier = await self.get_tier(user_id)
            limits = get_limits(tier)

            if limits.unlimited:
                return AffordabilityResult(
                    can_afford=True,
                    reason=REASON_UNLIMITED,
                    tier=tier.value,
                    remaining_budget=None,
                    remaining_runs=None,
                    estimated_cost=estimated_cost,
                    required_runs=required_runs,
                    run_type=run_type,
                )

            totals = await self.usage_repository.monthly_totals(user_id, month_start(self.clock()))

        except Exception as e:
            logger.error(
                "Budget check failed, denying operation",
                user_id=user_id,
                estimated_cost=estimated_cost,
                run_type=run_type.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AffordabilityResult(
                can_afford=False,
                reason=REASON_CHECK_FAILED,
                tier="unknown",
                remaining_budget=None,
                remaining_runs=None,
                estimated_cost=estimated_cost,
                required_runs=required_runs,
                run_type=run_type,
                message="Unable to verify budget, operation denied",
            )

        remaining_budget = None
        if limits.max_cost != UNLIMITED:
            remaining_budget = round(limits.max_cost - totals.total_cost, 6)

        runs_limit = limits.runs_limit(run_type)
        remaining_runs = None
        if runs_limit != UNLIMITED:
            remaining_runs = runs_limit - totals.runs(run_type)

        def result(can_afford: bool, reason: str, message: str = "") -> AffordabilityResult:
            return AffordabilityResult(
                can_afford=can_afford,
                reason=reason,
                tier=tier.value,
                remaining_budget=remaining_budget,
                remaining_runs=remaining_runs,
                estimated_cost=estimated_cost,
                required_runs=required_runs,
                run_type=run_type,
                message=message,
            )

        # A tier with no monetary allowance cannot start paid work at all
        if remaining_budget is not None and (
            limits.max_cost <= 0 or remaining_budget < estimated_cost
        ):
            logger.info(
                "Affordability check denied",
                user_id=user_id,
                reason=REASON_BUDGET_EXCEEDED,
                remaining_budget=remaining_budget,
                estimated_cost=estimated_cost,
            )
            return result(
                False,
                REASON_BUDGET_EXCEEDED,
                f"Insufficient budget: ${max(remaining_budget, 0):.4f} remaining, "
                f"${estimated_cost:.4f} required",
            )

        if remaining_runs is not None and remaining_runs < required_runs:
            logger.info(
                "Affordability check denied",
                user_id=user_id,
                reason=REASON_RUNS_EXCEEDED,
                run_type=run_type.value,
                remaining_runs=remaining_runs,
                required_runs=required_runs,
            )
            return result(
                False,
                REASON_RUNS_EXCEEDED,
                f"Monthly {run_type.value.upper()} run limit reached: "
                f"{max(remaining_runs, 0)} remaining, {required_runs} required",
            )

        return result(True, REASON_WITHIN_LIMITS)

    async def require(
        self,
        user_id: str,
        estimated_cost: float,
        required_runs: int = 1,
        run_type: RunType = RunType.AI,
    ) -> AffordabilityResult:
        """`can_afford` that raises BudgetExceededError on denial."""
        affordability = await self.can_afford(user_id, estimated_cost, required_runs, run_type)
        if not affordability.can_afford:
            message = affordability.message or "insufficient budget"
            raise BudgetExceededError(message, affordability=affordability)
        return affordability

    async def record_usage(
        self,
        user_id: str,
        cost: float,
        model: str,
        feature: str,
        metadata: dict[str, Any] | None = None,
        run_type: RunType = RunType.AI,
        *,
        provider: str | None = None,
        session_id: str | None = None,
        billable_run: bool = True,
    ) -> UsageRecord | None:
        """
        Append a usage record after a paid call completed.

        The external call already happened, so a ledger write failure is
        logged and reported as None instead of failing the caller's request.
        """
        if cost < 0:
            raise ValidationError("cost must be >= 0", field="cost")

        record = UsageRecord(
            user_id=user_id,
            cost=cost,
            model=model,
            feature=feature,
            run_type=run_type,
            billable_run=billable_run,
            provider=provider,
            session_id=session_id,
            metadata=dict(metadata or {}),
            created_at=self.clock(),
        )

        try:
            await self.usage_repository.insert(record)
        except DatabaseError as e:
            logger.error(
                "Failed to record usage",
                user_id=user_id,
                feature=feature,
                cost=cost,
                error=str(e),
            )
            return None

        logger.info(
            "Usage recorded",
            user_id=user_id,
            feature=feature,
            model=model,
            cost=cost,
            run_type=run_type.value,
            billable_run=billable_run,
        )
        return record

    async def get_usage_summary(self, user_id: str) -> dict[str, Any]:
        """This month's totals, per-feature and per-provider breakdowns, and percentages."""
        now = self.clock()
        since = month_start(now)
        tier = await self.get_tier(user_id)
        limits = get_limits(tier)
        totals: UsageTotals = await self.usage_repository.monthly_totals(user_id, since)
        breakdown = await self.usage_repository.monthly_breakdown(user_id, since)

        total_cost = totals.total_cost
        for bucket in breakdown.values():
            for entry in bucket.values():
                entry["cost"] = round(entry["cost"], 6)
                entry["percentage"] = (
                    round(entry["cost"] / total_cost * 100, 1) if total_cost > 0 else 0.0
                )

        def pct(used: float, limit: float) -> float | None:
            fraction = _usage_fraction(used, limit)
            return round(fraction * 100, 1) if fraction is not None else None

        return {
            "user_id": user_id,
            "tier": tier.value,
            "period_start": since.isoformat(),
            "limits": {
                "max_cost": limits.max_cost,
                "max_runs_ai": limits.max_runs_ai,
                "max_runs_api": limits.max_runs_api,
            },
            "usage": {
                "total_cost": round(total_cost, 6),
                "runs_ai": totals.runs_ai,
                "runs_api": totals.runs_api,
            },
            "percentages": {
                "budget": pct(total_cost, limits.max_cost),
                "runs_ai": pct(totals.runs_ai, limits.max_runs_ai),
                "runs_api": pct(totals.runs_api, limits.max_runs_api),
            },
            "by_feature": breakdown.get("by_feature", {}),
            "by_provider": breakdown.get("by_provider", {}),
        }

    async def check_usage_warnings(self, user_id: str) -> list[dict[str, Any]]:
        tier = await self.get_tier(user_id)
        limits = get_limits(tier)
        if limits.unlimited:
            return []

        totals = await self.usage_repository.monthly_totals(user_id, month_start(self.clock()))
        axes = (
            ("budget", totals.total_cost, limits.max_cost),
            ("runs_ai", totals.runs_ai, limits.max_runs_ai),
            ("runs_api", totals.runs_api, limits.max_runs_api),
        )

        warnings = []
        for axis, used, limit in axes:
            fraction = _usage_fraction(used, limit)
            if fraction is None or fraction < settings.USAGE_WARNING_THRESHOLD:
                continue

            warnings.append(
                {
                    "type": axis,
                    "percentage": round(fraction * 100, 1),
                    "used": round(used, 6) if axis == "budget" else used,
                    "limit": limit,
                    "severity": (
                        "high" if fraction >= settings.USAGE_HIGH_SEVERITY_THRESHOLD else "medium"
                    ),
                    "upgrade_recommended": fraction >= settings.USAGE_UPGRADE_THRESHOLD,
                    "message": f"You have used {fraction * 100:.0f}% of your monthly {axis.replace('_', ' ')} allowance",
                }
            )

        if warnings:
            logger.info("Usage warnings issued", user_id=user_id, tier=tier.value, count=len(warnings))
        return warnings


budget_gate = BudgetGate()
