import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.features.contact_intelligence.domain.errors import ProviderError
from app.features.contact_intelligence.providers import openai_service as openai_module
from app.features.contact_intelligence.providers.openai_service import OpenAIService
from app.features.contact_intelligence.providers.pinecone_client import (
    PineconeRerankClient,
    PineconeVectorIndex,
    parse_rerank_response,
    user_namespace,
)


PINECONE_SETTINGS = "app.features.contact_intelligence.providers.pinecone_client.settings"


@pytest.fixture
def pinecone_settings(monkeypatch):
    monkeypatch.setattr(f"{PINECONE_SETTINGS}.PINECONE_API_KEY", "pc-key")
    monkeypatch.setattr(
        f"{PINECONE_SETTINGS}.PINECONE_INDEX_HOST",
        "contacts-abc.svc.pinecone.io",
    )


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_user_namespace():
    assert user_namespace("u-42") == "user_u-42"


def test_parse_rerank_both_shapes():
    data_shape = parse_rerank_response({"data": [{"index": 0, "score": 0.2}, {"index": 1, "score": 0.9}]})
    results_shape = parse_rerank_response({"results": [{"index": 3, "relevance_score": 0.5}]})

    assert [(s.index, s.score) for s in data_shape] == [(1, 0.9), (0, 0.2)]
    assert [(s.index, s.score) for s in results_shape] == [(3, 0.5)]


@pytest.mark.parametrize("payload", [{}, {"data": [{"score": 0.4}]}, {"results": [{"index": 0}]}])
def test_parse_rerank_malformed(payload):
    with pytest.raises(ProviderError):
        parse_rerank_response(payload)


@pytest.mark.asyncio
async def test_vector_query(pinecone_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers["Api-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"matches": [{"id": "a", "score": 0.91}, {"id": 7, "score": 0.5}]})

    index = PineconeVectorIndex(client=_mock_client(handler))

    matches = await index.query("user_u1", [0.1, 0.2], top_k=2)

    assert [(m.id, m.score) for m in matches] == [("a", 0.91), ("7", 0.5)]
    assert seen["url"] == "https://contacts-abc.svc.pinecone.io/query"
    assert seen["api_key"] == "pc-key"
    assert seen["body"]["namespace"] == "user_u1"
    assert seen["body"]["topK"] == 2


@pytest.mark.asyncio
async def test_rerank_request(pinecone_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"index": 1, "score": 0.8}, {"index": 0, "score": 0.1}]})

    reranker = PineconeRerankClient(api_url="https://api.pinecone.io/", client=_mock_client(handler))

    scores = await reranker.rerank("cto", ["doc a", "doc b"], model="bge-reranker-v2-m3", top_n=2)

    assert [s.index for s in scores] == [1, 0]
    assert seen["url"] == "https://api.pinecone.io/rerank"
    assert seen["body"]["documents"] == [{"text": "doc a"}, {"text": "doc b"}]
    assert seen["body"]["return_documents"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, message",
    [(401, "authentication failed"), (429, "rate limited"), (503, "unavailable"), (400, "rejected")],
)
async def test_pinecone_http_errors(pinecone_settings, status, message):
    index = PineconeVectorIndex(client=_mock_client(lambda request: httpx.Response(status, text="nope")))

    with pytest.raises(ProviderError) as exc_info:
        await index.query("user_u1", [0.1], top_k=1)

    assert message in str(exc_info.value)
    assert exc_info.value.status == status


@pytest.mark.asyncio
async def test_pinecone_transport_error(pinecone_settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    index = PineconeVectorIndex(client=_mock_client(handler))

    with pytest.raises(ProviderError) as exc_info:
        await index.query("user_u1", [0.1], top_k=1)

    assert "timeout or connection error" in str(exc_info.value)


@pytest.mark.asyncio
async def test_pinecone_requires_api_key(monkeypatch, pinecone_settings):
    monkeypatch.setattr(f"{PINECONE_SETTINGS}.PINECONE_API_KEY", None)
    index = PineconeVectorIndex(client=_mock_client(lambda request: httpx.Response(200, json={})))

    with pytest.raises(ProviderError):
        await index.query("user_u1", [0.1], top_k=1)


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))],
            usage=SimpleNamespace(prompt_tokens=1000, completion_tokens=500),
        )


def _service(*outcomes) -> tuple[OpenAIService, FakeCompletions]:
    completions = FakeCompletions(outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIService(client=client), completions


def _status_error(cls, status: int):
    response = httpx.Response(status, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    return cls("boom", response=response, body=None)


@pytest.mark.asyncio
async def test_complete_json_parses_and_prices():
    service, completions = _service('{"enhanced_query": "cto OR chief technology officer"}')

    result = await service.complete_json("system", "user", model="gpt-4o-mini")

    assert result.content == {"enhanced_query": "cto OR chief technology officer"}
    assert result.cost == pytest.approx(0.00045)
    assert completions.calls[0]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["not json", "[1, 2]", ""])
async def test_complete_json_rejects_bad_payloads(content):
    service, _ = _service(content)

    with pytest.raises(ProviderError):
        await service.complete_json("system", "user", model="gpt-4o-mini")


@pytest.mark.asyncio
async def test_rate_limit_is_retried(monkeypatch):
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr(openai_module.settings, "OPENAI_MAX_RETRIES", 3)
    monkeypatch.setattr(openai_module.asyncio, "sleep", fake_sleep)
    service, completions = _service(_status_error(openai.RateLimitError, 429), '{"ok": true}')

    result = await service.complete_json("system", "user", model="gpt-4o-mini")

    assert result.content == {"ok": True}
    assert len(completions.calls) == 2
    assert waits == [1]


@pytest.mark.asyncio
async def test_client_error_is_not_retried(monkeypatch):
    monkeypatch.setattr(openai_module.settings, "OPENAI_MAX_RETRIES", 3)
    service, completions = _service(_status_error(openai.BadRequestError, 400))

    with pytest.raises(ProviderError) as exc_info:
        await service.complete_json("system", "user", model="gpt-4o-mini")

    assert len(completions.calls) == 1
    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_authentication_error():
    service, _ = _service(_status_error(openai.AuthenticationError, 401))

    with pytest.raises(ProviderError) as exc_info:
        await service.complete_json("system", "user", model="gpt-4o-mini")

    assert exc_info.value.status == 401


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(openai_module.settings, "OPENAI_API_KEY", None)

    with pytest.raises(ProviderError):
        OpenAIService()._get_client()
