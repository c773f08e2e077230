import pytest

from app.auth.verify import auth_dependency
from app.features.contact_intelligence.domain.subscriptions import SubscriptionTier
from app.features.contact_intelligence.services.budget_gate import BudgetGate
from tests.fakes import (
    USER_ID,
    FakeCache,
    FakeContactRepository,
    FakeGroupRepository,
    FakeJobRepository,
    FakeSubscriptionRepository,
    FakeUsageRepository,
)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": USER_ID}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def subscriptions():
    return FakeSubscriptionRepository({USER_ID: SubscriptionTier.PREMIUM})


@pytest.fixture
def usage_repo():
    return FakeUsageRepository()


@pytest.fixture
def gate(usage_repo, subscriptions):
    return BudgetGate(usage_repository=usage_repo, subscription_repository=subscriptions)


@pytest.fixture
def contact_repo():
    return FakeContactRepository()


@pytest.fixture
def group_repo():
    return FakeGroupRepository()


@pytest.fixture
def job_repo():
    return FakeJobRepository()
