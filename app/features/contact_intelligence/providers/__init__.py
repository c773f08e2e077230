"""
External providers used by the contact pipeline (OpenAI, Pinecone).
"""

from .openai_service import ChatResult, EmbeddingResult, OpenAIService
from .pinecone_client import (
    PineconeRerankClient,
    PineconeVectorIndex,
    RerankScore,
    VectorMatch,
    rerank_client,
    user_namespace,
    vector_index,
)

__all__ = [
    "ChatResult",
    "EmbeddingResult",
    "OpenAIService",
    "PineconeRerankClient",
    "PineconeVectorIndex",
    "RerankScore",
    "VectorMatch",
    "rerank_client",
    "user_namespace",
    "vector_index",
]
