"""
OpenAI integration for the contact pipeline: JSON chat completions (query
expansion, grouping enhancer) and query embeddings.

Transient failures are retried with exponential backoff; once retries are
exhausted the caller gets a ProviderError it can degrade on.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.features.contact_intelligence.domain.errors import ProviderError
from app.features.contact_intelligence.domain.pricing import chat_price, embedding_cost
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PROVIDER = "openai"


@dataclass(frozen=True, slots=True)
class ChatResult:
    content: dict[str, Any]
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def cost(self) -> float:
        return chat_price(self.model).cost(self.input_tokens, self.output_tokens)


@dataclass(frozen=True, slots=True)
class EmbeddingResult:
    vector: list[float]
    model: str
    cost: float


class OpenAIService:
    """Thin async wrapper around AsyncOpenAI with the retry policy used across the app."""

    def __init__(self, client: AsyncOpenAI | None = None):
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ProviderError("OPENAI_API_KEY not configured", provider=PROVIDER)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
            logger.info("OpenAI client initialized", timeout=settings.OPENAI_TIMEOUT_SECONDS)
        return self._client

    async def complete_json(
        self,
        system_message: str,
        user_message: str,
        *,
        model: str,
        max_tokens: int | None = None,
    ) -> ChatResult:
        """Run a chat completion constrained to a JSON object and parse it."""
        client = self._get_client()
        response = await self._with_retry(
            "chat_completion",
            lambda: client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": user_message},
                ],
                max_tokens=max_tokens or settings.OPENAI_MAX_TOKENS,
                temperature=settings.OPENAI_TEMPERATURE,
                response_format={"type": "json_object"},
            ),
        )

        if not response.choices or not response.choices[0].message.content:
            raise ProviderError("Empty response from OpenAI", provider=PROVIDER)

        raw = response.choices[0].message.content.strip()
        try:
            content = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("OpenAI returned invalid JSON", model=model, raw_result=raw[:200])
            raise ProviderError("OpenAI returned invalid JSON", provider=PROVIDER) from e

        if not isinstance(content, dict):
            raise ProviderError("OpenAI returned a non-object JSON payload", provider=PROVIDER)

        usage = response.usage
        return ChatResult(
            content=content,
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def embed(self, text: str, *, model: str | None = None) -> EmbeddingResult:
        model = model or settings.OPENAI_EMBEDDING_MODEL
        client = self._get_client()
        response = await self._with_retry(
            "embedding", lambda: client.embeddings.create(model=model, input=text)
        )
        if not response.data:
            raise ProviderError("Empty embedding response from OpenAI", provider=PROVIDER)

        return EmbeddingResult(
            vector=list(response.data[0].embedding),
            model=model,
            cost=embedding_cost(model, text),
        )

    async def _with_retry(self, operation: str, call):
        last_error: Exception | None = None
        max_retries = settings.OPENAI_MAX_RETRIES

        for attempt in range(max_retries):
            try:
                return await call()

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    wait_time=wait_time,
                )
                if attempt < max_retries - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning("OpenAI API timeout, retrying", operation=operation, attempt=attempt + 1)

            except openai.AuthenticationError as e:
                logger.error("OpenAI authentication failed", operation=operation)
                raise ProviderError(
                    "OpenAI authentication failed", provider=PROVIDER, status=401
                ) from e

            except openai.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error(
                        "OpenAI client error (not retrying)",
                        operation=operation,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    break
                logger.warning(
                    "OpenAI API error, retrying", operation=operation, attempt=attempt + 1, error=str(e)
                )

            except openai.APIError as e:
                last_error = e
                logger.warning(
                    "OpenAI API error, retrying", operation=operation, attempt=attempt + 1, error=str(e)
                )

        logger.error(
            "OpenAI call failed after retries",
            operation=operation,
            max_retries=max_retries,
            final_error=str(last_error),
        )
        raise ProviderError(
            f"OpenAI {operation} failed: {last_error}",
            provider=PROVIDER,
            status=getattr(last_error, "status_code", None),
        ) from last_error


openai_service = OpenAIService()
