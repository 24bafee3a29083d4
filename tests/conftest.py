"""
Pytest configuration and fixtures for memory engine tests.

Provides:
- Keyword embedding provider and embedding generator
- In-memory vector store
- MemoryService factory (with or without a scripted LLM)
"""

import pytest

from memoryengine.pipeline.embedder import EmbeddingGenerator
from memoryengine.pipeline.llm import LLMProvider
from memoryengine.service import MemoryService
from memoryengine.store.memory import InMemoryVectorStore

from tests.fakes import DIMS, KeywordEmbeddingProvider


@pytest.fixture
def provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def embedder(provider) -> EmbeddingGenerator:
    return EmbeddingGenerator(provider, batch_size=8, timeout_seconds=5.0)


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore(DIMS)


@pytest.fixture
def make_service(store, embedder):
    """Factory: make_service(llm=None, **kwargs) -> MemoryService over the shared store."""

    def _make(llm: LLMProvider | None = None, **kwargs) -> MemoryService:
        return MemoryService(store, embedder, llm, **kwargs)

    return _make


@pytest.fixture
def service(make_service) -> MemoryService:
    return make_service()
