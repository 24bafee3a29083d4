"""
Deterministic stand-ins for the embedding and LLM providers.

- KeywordEmbeddingProvider: 16-dim embeddings where texts on the same business
  topic (hours, contact, address, pricing, menu) land close together
  (similarity > 0.95) and texts on different topics land far apart (< 0.1)
- FakeLLM: scripted LLM that records every prompt it receives
"""

import hashlib
import math
import re

from memoryengine.memory.types import MemoryEntry, MemoryType, UpdateCandidate
from memoryengine.pipeline.embedder import EmbeddingProvider
from memoryengine.pipeline.llm import LLMProvider

DIMS = 16

SCOPE = "acme-bakery"
OTHER_SCOPE = "globex-garage"

# Topic axis -> words that put a text on that axis
TOPICS = {
    0: {"hours", "open", "opens", "close", "closes", "closing"},
    1: {"phone", "call", "contact", "number"},
    2: {"address", "located", "street", "location", "moved"},
    3: {"price", "prices", "pricing", "cost", "costs", "rates"},
    4: {"menu", "dish", "dishes", "food"},
}

_WORD_RE = re.compile(r"[a-z0-9]+")


def keyword_vector(text: str) -> list[float]:
    words = set(_WORD_RE.findall(text.lower()))
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    vector = [0.0] * DIMS
    on_topic = False
    for axis, keywords in TOPICS.items():
        if words & keywords:
            vector[axis] = 1.0
            on_topic = True
    if on_topic:
        # Small text-dependent noise so same-topic texts are close but not identical
        vector[14] = digest[0] / 255 * 0.2
        vector[15] = digest[1] / 255 * 0.2
    else:
        for i in range(5, DIMS):
            byte = digest[i]
            vector[i] = (byte / 255) * (1 if byte % 2 else -1)
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


def angle_vector(degrees: float) -> list[float]:
    """Unit vector in the plane of dims 5 and 6, *degrees* from dim 5."""
    vector = [0.0] * DIMS
    vector[5] = math.cos(math.radians(degrees))
    vector[6] = math.sin(math.radians(degrees))
    return vector


class KeywordEmbeddingProvider(EmbeddingProvider):
    def __init__(self, dimensions: int = DIMS) -> None:
        self._dimensions = dimensions
        self.calls: list[list[str]] = []

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [keyword_vector(t) for t in texts]

    @property
    def model_id(self) -> str:
        return "test/keyword-embedder"

    @property
    def dimensions(self) -> int:
        return self._dimensions


class FakeLLM(LLMProvider):
    """Returns scripted responses in order; an Exception in the script is raised."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError(f"unexpected LLM call: {prompt[:80]!r}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_entry(
    text: str,
    scope_id: str = SCOPE,
    memory_type: MemoryType = MemoryType.KNOWLEDGE,
    **kwargs,
) -> MemoryEntry:
    kwargs.setdefault("vector", keyword_vector(text))
    return MemoryEntry(scope_id=scope_id, text=text, type=memory_type, **kwargs)


def make_candidate(text: str, scope_id: str = SCOPE, reason: str = "", **kwargs) -> UpdateCandidate:
    return UpdateCandidate(scope_id=scope_id, text=text, reason=reason, **kwargs)
