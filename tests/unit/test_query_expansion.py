import pytest

from app.features.contact_intelligence.domain.models import ExpansionSource
from app.features.contact_intelligence.domain.options import ExpansionOptions
from app.features.contact_intelligence.domain.subscriptions import SubscriptionTier
from app.features.contact_intelligence.providers.openai_service import ProviderError
from app.features.contact_intelligence.services.query_expansion import (
    QueryExpansionService,
    normalize_query,
)
from tests.fakes import USER_ID, FakeLLM


def _service(fake_cache, gate, llm=None):
    return QueryExpansionService(
        cache=fake_cache, llm=llm or FakeLLM(), gate=gate, options=ExpansionOptions(cache_ttl_seconds=3600)
    )


def test_normalize_query_trims_and_casefolds():
    assert normalize_query("  Head   of  SALES ") == "head of sales"
    assert normalize_query("") == ""


def test_expansions_cached_for_a_day_by_default():
    assert ExpansionOptions().cache_ttl_seconds == 86400


@pytest.mark.asyncio
async def test_dictionary_hit_is_free(fake_cache, gate, usage_repo):
    llm = FakeLLM()
    service = _service(fake_cache, gate, llm)

    result = await service.expand("  ceo ", user_id=USER_ID)

    assert result.source == ExpansionSource.DICTIONARY
    assert result.enhanced_query.startswith("CEO, Chief Executive Officer")
    assert result.language == "eng"
    assert result.cost == 0.0
    assert llm.calls == []
    assert fake_cache.store == {}
    assert usage_repo.records == []


@pytest.mark.asyncio
async def test_french_dictionary_term(fake_cache, gate):
    result = await _service(fake_cache, gate).expand("PDG")

    assert result.source == ExpansionSource.DICTIONARY
    assert result.language == "fra"


@pytest.mark.asyncio
async def test_cache_hit_skips_llm(fake_cache, gate):
    await fake_cache.set(
        "query_expansion:growth hacker", {"enhanced_query": "Growth Hacker, Growth Marketer", "language": "eng"}
    )
    llm = FakeLLM()

    result = await _service(fake_cache, gate, llm).expand("Growth  Hacker")

    assert result.source == ExpansionSource.CACHE
    assert result.enhanced_query == "Growth Hacker, Growth Marketer"
    assert llm.calls == []


@pytest.mark.asyncio
async def test_llm_expansion_is_cached_and_recorded(fake_cache, gate, usage_repo):
    llm = FakeLLM({"enhanced_query": " Growth Hacker, Growth Marketer ", "language": "eng"})
    service = _service(fake_cache, gate, llm)

    first = await service.expand("growth hacker", user_id=USER_ID)
    second = await service.expand("GROWTH HACKER", user_id=USER_ID)

    assert first.source == ExpansionSource.LLM
    assert first.enhanced_query == "Growth Hacker, Growth Marketer"
    assert first.cost > 0
    assert second.source == ExpansionSource.CACHE
    assert len(llm.calls) == 1
    assert fake_cache.ttls["query_expansion:growth hacker"] == 3600

    assert len(usage_repo.records) == 1
    record = usage_repo.records[0]
    assert record.feature == "query_expansion"
    assert record.billable_run is False
    assert record.cost == pytest.approx(first.cost)


@pytest.mark.asyncio
async def test_llm_failure_returns_raw_query_without_caching(fake_cache, gate, usage_repo):
    llm = FakeLLM(ProviderError("OpenAI down", provider="openai"))

    result = await _service(fake_cache, gate, llm).expand(" growth hacker ", user_id=USER_ID)

    assert result.source == ExpansionSource.PASSTHROUGH
    assert result.degraded is True
    assert result.reason == "expansion_failed"
    assert result.enhanced_query == "growth hacker"
    assert fake_cache.store == {}
    assert usage_repo.records == []


@pytest.mark.asyncio
async def test_malformed_llm_payload_degrades(fake_cache, gate):
    llm = FakeLLM({"something_else": 1})

    result = await _service(fake_cache, gate, llm).expand("growth hacker")

    assert result.degraded is True
    assert fake_cache.store == {}


@pytest.mark.asyncio
async def test_budget_denial_skips_llm(fake_cache, gate, subscriptions):
    subscriptions.tiers[USER_ID] = SubscriptionTier.BASE
    llm = FakeLLM()

    result = await _service(fake_cache, gate, llm).expand("growth hacker", user_id=USER_ID)

    assert result.degraded is True
    assert result.reason == "budget_exceeded"
    assert llm.calls == []


@pytest.mark.asyncio
async def test_empty_query_passes_through(fake_cache, gate):
    result = await _service(fake_cache, gate).expand("   ")

    assert result.source == ExpansionSource.PASSTHROUGH
    assert result.reason == "empty_query"


@pytest.mark.asyncio
async def test_clear_cache_only_touches_expansions(fake_cache, gate):
    await fake_cache.set("query_expansion:a", {"enhanced_query": "a"})
    await fake_cache.set("query_expansion:b", {"enhanced_query": "b"})
    await fake_cache.set("ratelimit:user:1", 1)

    removed = await _service(fake_cache, gate).clear_cache()

    assert removed == 2
    assert list(fake_cache.store) == ["ratelimit:user:1"]
