"""Unit prices (USD) for the paid providers the pipeline calls."""

import math
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TokenPrice:
    input_per_million: float
    output_per_million: float

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.input_per_million + output_tokens * self.output_per_million
        ) / 1_000_000


CHAT_MODEL_PRICES: dict[str, TokenPrice] = {
    "gpt-4o-mini": TokenPrice(input_per_million=0.15, output_per_million=0.60),
    "gpt-4o": TokenPrice(input_per_million=2.50, output_per_million=10.00),
    "gpt-4.1-mini": TokenPrice(input_per_million=0.40, output_per_million=1.60),
}
DEFAULT_CHAT_PRICE = CHAT_MODEL_PRICES["gpt-4o-mini"]

EMBEDDING_PRICES_PER_MILLION: dict[str, float] = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
}
DEFAULT_EMBEDDING_PRICE_PER_MILLION = 0.02

# Pinecone serverless read units, approximated per query
VECTOR_QUERY_COST = 0.00001

# $2.00 per 1,000 documents for every hosted model today
RERANK_PRICES_PER_DOCUMENT: dict[str, float] = {
    "bge-reranker-v2-m3": 0.002,
    "pinecone-rerank-v0": 0.002,
    "cohere-rerank-3.5": 0.002,
}
FALLBACK_RERANK_PRICE_PER_DOCUMENT = 0.002

# Rough expected usage of one LLM query expansion call
EXPANSION_ESTIMATED_INPUT_TOKENS = 250
EXPANSION_ESTIMATED_OUTPUT_TOKENS = 120

# Rough per-contact prompt size for one grouping feature call
GROUPING_TOKENS_PER_CONTACT = 40
GROUPING_ESTIMATED_OUTPUT_TOKENS = 800


def chat_price(model: str) -> TokenPrice:
    return CHAT_MODEL_PRICES.get(model, DEFAULT_CHAT_PRICE)


def estimate_tokens(text: str) -> int:
    """~4 characters per token."""
    return math.ceil(len(text or "") / 4)


def embedding_cost(model: str, text: str) -> float:
    per_million = EMBEDDING_PRICES_PER_MILLION.get(model, DEFAULT_EMBEDDING_PRICE_PER_MILLION)
    return estimate_tokens(text) * per_million / 1_000_000


def rerank_price_per_document(model: str) -> float:
    return RERANK_PRICES_PER_DOCUMENT.get(model, FALLBACK_RERANK_PRICE_PER_DOCUMENT)


def rerank_cost(model: str, document_count: int) -> float:
    return document_count * rerank_price_per_document(model)


def expansion_estimate(model: str) -> float:
    return chat_price(model).cost(
        EXPANSION_ESTIMATED_INPUT_TOKENS, EXPANSION_ESTIMATED_OUTPUT_TOKENS
    )


def grouping_feature_estimate(model: str, contact_count: int) -> float:
    return chat_price(model).cost(
        contact_count * GROUPING_TOKENS_PER_CONTACT, GROUPING_ESTIMATED_OUTPUT_TOKENS
    )
