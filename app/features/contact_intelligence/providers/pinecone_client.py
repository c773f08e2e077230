"""
Pinecone REST clients: per-user namespace vector queries and hosted rerank.

Both talk plain HTTPS through httpx. Authentication failures, rate limits,
server errors and transport errors all surface as ProviderError so callers
can fall back (vector-only ranking, raw query) instead of failing the search.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.features.contact_intelligence.domain.errors import ProviderError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PROVIDER = "pinecone"


@dataclass(frozen=True, slots=True)
class VectorMatch:
    id: str
    score: float


@dataclass(frozen=True, slots=True)
class RerankScore:
    index: int
    score: float


def user_namespace(user_id: str) -> str:
    return f"user_{user_id}"


def _headers() -> dict[str, str]:
    if not settings.PINECONE_API_KEY:
        raise ProviderError("PINECONE_API_KEY not configured", provider=PROVIDER)
    return {
        "Api-Key": settings.PINECONE_API_KEY,
        "X-Pinecone-API-Version": settings.PINECONE_API_VERSION,
        "Content-Type": "application/json",
    }


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    if response.is_success:
        return

    status = response.status_code
    if status in (401, 403):
        message = f"Pinecone {operation} authentication failed"
    elif status == 429:
        message = f"Pinecone {operation} rate limited"
    elif status >= 500:
        message = f"Pinecone {operation} unavailable ({status})"
    else:
        message = f"Pinecone {operation} rejected the request ({status}): {response.text[:200]}"

    logger.warning("Pinecone request failed", operation=operation, status_code=status)
    raise ProviderError(message, provider=PROVIDER, status=status)


class PineconeVectorIndex:
    """Query client for a serverless index addressed by its data-plane host."""

    def __init__(self, host: str | None = None, client: httpx.AsyncClient | None = None):
        self.host = host
        self._client = client

    def _base_url(self) -> str:
        host = self.host or settings.PINECONE_INDEX_HOST
        if not host:
            raise ProviderError("PINECONE_INDEX_HOST not configured", provider=PROVIDER)
        return host if host.startswith("http") else f"https://{host}"

    async def query(self, namespace: str, vector: list[float], top_k: int) -> list[VectorMatch]:
        payload = {
            "namespace": namespace,
            "vector": vector,
            "topK": top_k,
            "includeMetadata": False,
            "includeValues": False,
        }
        data = await self._post(f"{self._base_url()}/query", payload, "query")

        matches = data.get("matches") or []
        return [VectorMatch(id=str(m["id"]), score=float(m.get("score", 0.0))) for m in matches]

    async def _post(self, url: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=_headers())
            else:
                async with httpx.AsyncClient(timeout=settings.PINECONE_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, json=payload, headers=_headers())
        except httpx.RequestError as e:
            logger.warning("Pinecone transport error", operation=operation, error=str(e))
            raise ProviderError(
                f"Pinecone {operation} unavailable (timeout or connection error)", provider=PROVIDER
            ) from e

        _raise_for_status(response, operation)
        return response.json()


class PineconeRerankClient(PineconeVectorIndex):
    """Hosted cross-encoder rerank (POST {api_url}/rerank)."""

    def __init__(self, api_url: str | None = None, client: httpx.AsyncClient | None = None):
        super().__init__(client=client)
        self.api_url = api_url

    async def rerank(
        self, query: str, documents: list[str], *, model: str, top_n: int
    ) -> list[RerankScore]:
        payload = {
            "model": model,
            "query": query,
            "documents": [{"text": document} for document in documents],
            "top_n": top_n,
            "return_documents": False,
        }
        base = (self.api_url or settings.PINECONE_API_URL).rstrip("/")
        data = await self._post(f"{base}/rerank", payload, "rerank")
        return parse_rerank_response(data)


def parse_rerank_response(data: dict[str, Any]) -> list[RerankScore]:
    """
    Accept both response shapes seen from rerank providers:
    {"data": [{"index", "score"}]} and {"results": [{"index", "relevance_score"}]}.
    Output is ordered by descending score.
    """
    items = data.get("data")
    if items is None:
        items = data.get("results")
    if items is None:
        raise ProviderError("Rerank response missing results", provider=PROVIDER)

    scores = []
    for item in items:
        score = item.get("score", item.get("relevance_score"))
        if score is None or "index" not in item:
            raise ProviderError("Malformed rerank result entry", provider=PROVIDER)
        scores.append(RerankScore(index=int(item["index"]), score=float(score)))

    scores.sort(key=lambda s: s.score, reverse=True)
    return scores


vector_index = PineconeVectorIndex()
rerank_client = PineconeRerankClient()
