from datetime import UTC, datetime

import pytest

from app.db.helpers import DatabaseError
from app.features.contact_intelligence.domain.errors import BudgetExceededError, ValidationError
from app.features.contact_intelligence.domain.subscriptions import RunType, SubscriptionTier
from app.features.contact_intelligence.services.budget_gate import BudgetGate, month_start
from tests.fakes import USER_ID, FakeSubscriptionRepository, FakeUsageRepository


def test_month_start_is_first_day_utc():
    assert month_start(datetime(2026, 3, 14, 9, 30, tzinfo=UTC)) == datetime(2026, 3, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_within_limits(gate):
    result = await gate.can_afford(USER_ID, 0.01, required_runs=1, run_type=RunType.AI)

    assert result.can_afford is True
    assert result.reason == "within_limits"
    assert result.tier == "premium"
    assert result.remaining_budget == 3.0
    assert result.remaining_runs == 30


@pytest.mark.asyncio
async def test_pro_user_near_budget_is_denied(gate, subscriptions, usage_repo):
    subscriptions.tiers[USER_ID] = SubscriptionTier.PRO
    usage_repo.add(USER_ID, 1.4995, run_type=RunType.API)

    result = await gate.can_afford(USER_ID, 0.002, required_runs=1, run_type=RunType.API)

    assert result.can_afford is False
    assert result.reason == "budget_exceeded"
    assert result.remaining_budget == pytest.approx(0.0005)
    assert "$0.0005 remaining" in result.message


@pytest.mark.asyncio
async def test_base_tier_cannot_start_paid_work(gate, subscriptions):
    subscriptions.tiers[USER_ID] = SubscriptionTier.BASE

    result = await gate.can_afford(USER_ID, 0.0, required_runs=0, run_type=RunType.API)

    assert result.can_afford is False
    assert result.reason == "budget_exceeded"


@pytest.mark.asyncio
async def test_runs_exceeded(gate, usage_repo):
    for _ in range(30):
        usage_repo.add(USER_ID, 0.001, run_type=RunType.AI)

    ai = await gate.can_afford(USER_ID, 0.001, required_runs=1, run_type=RunType.AI)
    api = await gate.can_afford(USER_ID, 0.001, required_runs=1, run_type=RunType.API)

    assert ai.can_afford is False
    assert ai.reason == "runs_exceeded"
    assert ai.remaining_runs == 0
    assert api.can_afford is True


@pytest.mark.asyncio
async def test_non_billable_records_do_not_consume_runs(gate, usage_repo):
    for _ in range(40):
        usage_repo.add(USER_ID, 0.0001, run_type=RunType.AI, billable_run=False)

    result = await gate.can_afford(USER_ID, 0.001, required_runs=1, run_type=RunType.AI)

    assert result.can_afford is True
    assert result.remaining_runs == 30


@pytest.mark.asyncio
async def test_zero_runs_only_checks_budget(gate, usage_repo):
    for _ in range(30):
        usage_repo.add(USER_ID, 0.001, run_type=RunType.AI)

    result = await gate.can_afford(USER_ID, 0.001, required_runs=0, run_type=RunType.AI)

    assert result.can_afford is True


@pytest.mark.asyncio
async def test_enterprise_is_unlimited(gate, subscriptions, usage_repo):
    subscriptions.tiers[USER_ID] = SubscriptionTier.ENTERPRISE
    usage_repo.error = DatabaseError("should not be read", operation="monthly_totals")

    result = await gate.can_afford(USER_ID, 1000.0, required_runs=500)

    assert result.can_afford is True
    assert result.reason == "unlimited"
    assert result.remaining_budget is None


@pytest.mark.asyncio
async def test_fails_closed_when_ledger_unreadable(gate, usage_repo):
    usage_repo.error = DatabaseError("connection refused", operation="monthly_totals")

    result = await gate.can_afford(USER_ID, 0.001)

    assert result.can_afford is False
    assert result.reason == "budget_check_failed"
    assert result.tier == "unknown"


@pytest.mark.asyncio
async def test_fails_closed_when_tier_unreadable(gate, subscriptions):
    subscriptions.error = RuntimeError("boom")

    result = await gate.can_afford(USER_ID, 0.001)

    assert result.can_afford is False
    assert result.reason == "budget_check_failed"


@pytest.mark.asyncio
async def test_can_afford_has_no_side_effects(gate, usage_repo):
    await gate.can_afford(USER_ID, 0.5)
    await gate.can_afford(USER_ID, 50.0)

    assert usage_repo.records == []


@pytest.mark.asyncio
async def test_negative_inputs_are_rejected(gate):
    with pytest.raises(ValidationError):
        await gate.can_afford(USER_ID, -0.01)
    with pytest.raises(ValidationError):
        await gate.can_afford(USER_ID, 0.01, required_runs=-1)
    with pytest.raises(ValidationError):
        await gate.record_usage(USER_ID, -1.0, "m", "f")


@pytest.mark.asyncio
async def test_require_raises_with_affordability_detail(gate, subscriptions):
    subscriptions.tiers[USER_ID] = SubscriptionTier.BASE

    with pytest.raises(BudgetExceededError) as exc_info:
        await gate.require(USER_ID, 0.01)

    detail = exc_info.value.to_detail()
    assert exc_info.value.status_code == 402
    assert detail["error"] == "budget_exceeded"
    assert detail["can_afford"] is False
    assert detail["tier"] == "base"


@pytest.mark.asyncio
async def test_record_usage_appends_record(usage_repo, subscriptions):
    fixed = datetime(2026, 3, 14, 12, 0, tzinfo=UTC)
    gate = BudgetGate(usage_repo, subscriptions, clock=lambda: fixed)

    record = await gate.record_usage(
        USER_ID, 0.004, "bge-reranker-v2-m3", "rerank", {"documents": 2}, RunType.API, provider="pinecone"
    )

    assert record is not None
    assert usage_repo.records == [record]
    assert record.created_at == fixed
    assert record.billable_run is True
    assert record.metadata == {"documents": 2}


@pytest.mark.asyncio
async def test_record_usage_failure_is_reported_not_raised(gate, usage_repo):
    usage_repo.insert_error = DatabaseError("insert failed", operation="insert_usage")

    assert await gate.record_usage(USER_ID, 0.01, "gpt-4o-mini", "ai_grouping") is None


@pytest.mark.asyncio
async def test_previous_month_usage_is_ignored():
    usage = FakeUsageRepository()
    subscriptions = FakeSubscriptionRepository({USER_ID: SubscriptionTier.PREMIUM})
    gate = BudgetGate(usage, subscriptions, clock=lambda: datetime(2026, 3, 2, tzinfo=UTC))
    usage.add(USER_ID, 2.9, created_at=datetime(2026, 2, 27, tzinfo=UTC))

    result = await gate.can_afford(USER_ID, 1.0)

    assert result.can_afford is True
    assert result.remaining_budget == 3.0


@pytest.mark.asyncio
async def test_usage_warnings_thresholds(gate, usage_repo):
    usage_repo.add(USER_ID, 2.88, run_type=RunType.API)
    for _ in range(25):
        usage_repo.add(USER_ID, 0.0, run_type=RunType.AI)

    warnings = {w["type"]: w for w in await gate.check_usage_warnings(USER_ID)}

    assert set(warnings) == {"budget", "runs_ai"}
    assert warnings["budget"]["percentage"] == 96.0
    assert warnings["budget"]["severity"] == "high"
    assert warnings["budget"]["upgrade_recommended"] is True
    assert warnings["runs_ai"]["percentage"] == pytest.approx(83.3)
    assert warnings["runs_ai"]["severity"] == "medium"
    assert warnings["runs_ai"]["upgrade_recommended"] is False


@pytest.mark.asyncio
async def test_no_warnings_for_light_usage_or_unlimited(gate, subscriptions, usage_repo):
    usage_repo.add(USER_ID, 0.5)
    assert await gate.check_usage_warnings(USER_ID) == []

    subscriptions.tiers[USER_ID] = SubscriptionTier.ENTERPRISE
    usage_repo.add(USER_ID, 5000.0)
    assert await gate.check_usage_warnings(USER_ID) == []


@pytest.mark.asyncio
async def test_usage_summary_breakdown(gate, usage_repo):
    usage_repo.add(USER_ID, 0.3, run_type=RunType.AI, feature="ai_grouping", provider="openai")
    usage_repo.add(USER_ID, 0.1, run_type=RunType.API, feature="rerank", provider="pinecone")

    summary = await gate.get_usage_summary(USER_ID)

    assert summary["tier"] == "premium"
    assert summary["usage"] == {"total_cost": 0.4, "runs_ai": 1, "runs_api": 1}
    assert summary["percentages"]["budget"] == pytest.approx(13.3)
    assert summary["by_feature"]["ai_grouping"]["percentage"] == 75.0
    assert summary["by_provider"]["pinecone"]["cost"] == 0.1
