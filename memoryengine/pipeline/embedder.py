"""
Embedding generation for the memory engine.

Provides an abstract EmbeddingProvider interface so the embedding backend can
be swapped without modifying callers, and the EmbeddingGenerator that every
other component uses to turn text into vectors.

Providers:
- SentenceTransformerProvider: local model (default all-MiniLM-L6-v2, 384 dims)
- OpenAIEmbeddingProvider: OpenAI-compatible /embeddings HTTP API

Design decisions:
- normalize_embeddings=True on the local model so cosine similarity matches
  pgvector's cosine_distance operator
- The generator, not the provider, owns batching, the per-call timeout and
  dimension checks, so every provider gets the same guarantees
- No module-level singleton: build_embedding_provider(settings) constructs a
  provider and the caller keeps it

Exports: EmbeddingProvider, SentenceTransformerProvider, OpenAIEmbeddingProvider,
         EmbeddingGenerator, build_embedding_provider
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import httpx

from memoryengine.errors import DimensionMismatch, ProviderError, TransientError
from memoryengine.pipeline.http import provider_call, raise_for_provider_status
from memoryengine.pipeline.retry import RetryPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """Abstract interface for embedding model providers.

    Implementors must:
    - Embed a batch of texts, returning one float vector per text, in order
    - Expose model_id (e.g. "sentence-transformers/all-MiniLM-L6-v2")
    - Expose dimensions (vector size, e.g. 384)

    Failures must be raised as RateLimited, AuthError or TransientError.
    """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of texts and return a list of float vectors."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        ...


# ---------------------------------------------------------------------------
# SentenceTransformer implementation
# ---------------------------------------------------------------------------


class SentenceTransformerProvider(EmbeddingProvider):
    """EmbeddingProvider backed by sentence-transformers.

    The model is loaded once at construction. Encoding is CPU-bound, so it runs
    in a worker thread to keep the event loop free.
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
    ) -> None:
        from sentence_transformers import SentenceTransformer  # noqa: PLC0415

        self._model_name = model_name
        self._model = SentenceTransformer(model_name)
        # Detect dimensions from the loaded model rather than hardcoding
        self._dimensions: int = self._model.get_sentence_embedding_dimension()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors = await asyncio.to_thread(
            self._model.encode, texts, normalize_embeddings=True
        )
        return [v.tolist() for v in vectors]

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions


# ---------------------------------------------------------------------------
# OpenAI-compatible HTTP implementation
# ---------------------------------------------------------------------------


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """EmbeddingProvider for any OpenAI-compatible /embeddings endpoint.

    Args:
        api_key:    Bearer token for the provider.
        model:      Embedding model name (e.g. "text-embedding-ada-002").
        dimensions: Expected vector length for *model*.
        base_url:   API root; "/embeddings" is appended.
        client:     Optional shared httpx.AsyncClient (tests inject a MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-ada-002",
        dimensions: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._url = base_url.rstrip("/") + "/embeddings"
        self._client = client

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        client = self._client or httpx.AsyncClient()
        try:
            async with provider_call("embeddings"):
                response = await client.post(
                    self._url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={"model": self._model, "input": texts},
                )
            raise_for_provider_status(response, "embeddings")
            try:
                data = sorted(response.json()["data"], key=lambda item: item["index"])
                return [item["embedding"] for item in data]
            except (ValueError, KeyError, TypeError) as exc:
                raise ProviderError(f"embeddings: unexpected response body: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions


def build_embedding_provider(settings) -> EmbeddingProvider:
    """Construct the provider selected by settings.embedding_provider."""
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            base_url=settings.openai_base_url,
        )
    if settings.embedding_provider == "sentence-transformers":
        return SentenceTransformerProvider(settings.embedding_model)
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider!r}")


# ---------------------------------------------------------------------------
# Generator used by the rest of the engine
# ---------------------------------------------------------------------------


class EmbeddingGenerator:
    """Batching, time-bounded front end over an EmbeddingProvider.

    Args:
        provider:        The backing EmbeddingProvider.
        batch_size:      Maximum texts per provider call.
        timeout_seconds: Bound on each provider call; expiry raises TransientError.
        retry:           Policy applied per batch (default: a single attempt).
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = 100,
        timeout_seconds: float = 20.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.provider = provider
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds
        self.retry = retry or RetryPolicy(max_attempts=1)

    @classmethod
    def from_settings(cls, settings, provider: EmbeddingProvider | None = None) -> "EmbeddingGenerator":
        return cls(
            provider or build_embedding_provider(settings),
            batch_size=settings.embedding_batch_size,
            timeout_seconds=settings.provider_timeout_seconds,
            retry=RetryPolicy.from_settings(settings),
        )

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    async def generate(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in provider-sized chunks, preserving order."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            chunk = texts[start:start + self.batch_size]
            batch = await self.retry.run(self._embed_chunk, chunk)
            if len(batch) != len(chunk):
                raise ProviderError(
                    f"embeddings: expected {len(chunk)} vectors, provider returned {len(batch)}"
                )
            vectors.extend(batch)
        return vectors

    async def embed_one(self, text: str) -> list[float]:
        return (await self.generate([text]))[0]

    async def _embed_chunk(self, chunk: list[str]) -> list[list[float]]:
        try:
            async with asyncio.timeout(self.timeout_seconds):
                batch = await self.provider.embed_batch(chunk)
        except TimeoutError as exc:
            logger.warning(
                "Embedding generator: provider call timed out after %ss", self.timeout_seconds
            )
            raise TransientError(
                f"embeddings: timed out after {self.timeout_seconds}s"
            ) from exc
        for vector in batch:
            if len(vector) != self.provider.dimensions:
                raise DimensionMismatch(
                    f"{self.provider.model_id} returned a {len(vector)}-dim vector, "
                    f"expected {self.provider.dimensions}"
                )
        return batch
