"""LLM access for conflict classification and update extraction.

LLMProvider is the seam both the resolver and the extraction service depend
on. AnthropicProvider calls the Anthropic messages API directly over httpx.

parse_json_payload() is the single place LLM text becomes data: it strips
markdown fences, decodes JSON and validates it against a pydantic model,
raising SchemaError on any mismatch instead of guessing at missing fields.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from memoryengine.errors import ProviderError, SchemaError, TransientError
from memoryengine.pipeline.http import provider_call, raise_for_provider_status
from memoryengine.pipeline.retry import RetryPolicy

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", flags=re.MULTILINE)


class LLMProvider(ABC):
    """Text completion provider used for structured-JSON prompts."""

    @abstractmethod
    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """Return the model's raw text response to *prompt*."""
        ...


class AnthropicProvider(LLMProvider):
    """LLMProvider backed by the Anthropic messages API.

    Each call is bounded by *timeout_seconds*; expiry raises TransientError.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-haiku-20240307",
        timeout_seconds: float = 20.0,
        retry: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._retry = retry or RetryPolicy(max_attempts=1)
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        return await self._retry.run(self._complete_once, prompt, temperature, max_tokens)

    async def _complete_once(self, prompt: str, temperature: float, max_tokens: int) -> str:
        client = self._client or httpx.AsyncClient()
        try:
            async with asyncio.timeout(self._timeout), provider_call("llm"):
                response = await client.post(
                    _ANTHROPIC_URL,
                    headers={
                        "x-api-key": self._api_key,
                        "anthropic-version": "2023-06-01",
                        "content-type": "application/json",
                    },
                    json={
                        "model": self._model,
                        "max_tokens": max_tokens,
                        "temperature": temperature,
                        "messages": [{"role": "user", "content": prompt}],
                    },
                )
        except TimeoutError as exc:
            raise TransientError(f"llm: timed out after {self._timeout}s") from exc
        finally:
            if self._client is None:
                await client.aclose()

        raise_for_provider_status(response, "llm")
        try:
            # Anthropic messages API: content is a list of blocks
            return response.json()["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"llm: unexpected response body: {exc}") from exc


def build_llm_provider(settings) -> LLMProvider | None:
    """Return the configured provider, or None when no API key is set."""
    if not settings.anthropic_api_key:
        logger.info("LLM provider disabled: no API key configured")
        return None
    return AnthropicProvider(
        api_key=settings.anthropic_api_key,
        model=settings.llm_model,
        timeout_seconds=settings.provider_timeout_seconds,
        retry=RetryPolicy.from_settings(settings),
    )


def strip_fences(raw: str) -> str:
    return _FENCE_RE.sub("", raw.strip()).strip()


def parse_json_payload(raw: str, model: type[ModelT]) -> ModelT:
    """Decode *raw* LLM text as JSON and validate it against *model*.

    Raises:
        SchemaError: the text is not a JSON object or fails validation.
    """
    cleaned = strip_fences(raw)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"response is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise SchemaError(f"expected a JSON object, got {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise SchemaError(f"response failed schema validation: {exc.error_count()} error(s)") from exc
