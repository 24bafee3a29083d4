"""MemoryService — the interface the rest of the platform talks to.

Wires the engine's components together with explicit constructor injection
(no module-level singletons) and exposes:

  store_conversation_embeddings(scope_id, segments)
  process_business_conversations(scope_id, conversations)
  search_similar_conversations(scope_id, query_text, threshold, top_k)
  update_memory(scope_id, candidate, mode)
  apply_resolution(scope_id, candidate, resolution)
  process_conversation(scope_id, conversation_text, mode)
  get_memory_conflicts(scope_id, threshold)
  get_business_knowledge_summary(scope_id)
  delete_memory(scope_id, memory_id)
  delete_scope(scope_id)

update_memory() and process_conversation() never raise provider or store
errors: they come back as UpdateResult(state=failed, error=...). The read and bulk-write
operations raise typed MemoryEngineError subclasses. TenantScopeViolation
always raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from memoryengine.conflict.detector import ConflictDetector
from memoryengine.conflict.resolver import ConflictResolver, ResolverPolicy
from memoryengine.errors import ProviderError, TenantScopeViolation
from memoryengine.extraction.extractor import ExtractionService
from memoryengine.memory.orchestrator import MemoryUpdateOrchestrator
from memoryengine.memory.types import (
    CandidateState,
    ConflictGroup,
    KnowledgeSummary,
    MemoryEntry,
    MemoryType,
    Resolution,
    SearchMatch,
    UpdateCandidate,
    UpdateMode,
    UpdateResult,
    utcnow,
)
from memoryengine.pipeline.embedder import EmbeddingGenerator
from memoryengine.pipeline.llm import LLMProvider, build_llm_provider
from memoryengine.search.similarity import SimilaritySearch
from memoryengine.store.base import VectorStore, require_scope

logger = logging.getLogger(__name__)

# Number of recent texts included in the knowledge summary
_SUMMARY_RECENT = 10


@dataclass
class Segment:
    """A piece of text to store as-is (conversation turn, FAQ, document chunk)."""

    text: str
    type: MemoryType = MemoryType.CONVERSATION
    metadata: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.8


class MemoryService:
    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingGenerator,
        llm: LLMProvider | None = None,
        *,
        conflict_threshold: float = 0.85,
        conflict_top_k: int = 10,
        default_search_threshold: float = 0.7,
        default_search_limit: int = 5,
        max_search_limit: int = 50,
        resolver_policy: ResolverPolicy | None = None,
        llm_temperature: float = 0.1,
        llm_max_tokens: int = 300,
        store_timeout_seconds: float | None = 20.0,
    ) -> None:
        if embedder.dimensions != store.dimensions:
            raise ValueError(
                f"embedder produces {embedder.dimensions}-dim vectors, "
                f"store expects {store.dimensions}"
            )
        self.store = store
        self.embedder = embedder
        self.default_search_threshold = default_search_threshold
        self.default_search_limit = default_search_limit
        self.search = SimilaritySearch(store, embedder, max_limit=max_search_limit)
        self.detector = ConflictDetector(self.search, conflict_threshold, conflict_top_k)
        self.resolver = ConflictResolver(llm, resolver_policy or ResolverPolicy())
        self.orchestrator = MemoryUpdateOrchestrator(
            store,
            embedder,
            self.detector,
            self.resolver,
            store_timeout_seconds=store_timeout_seconds,
        )
        self.extractor = ExtractionService(llm, temperature=llm_temperature, max_tokens=llm_max_tokens)

    @classmethod
    def from_settings(
        cls,
        settings,
        store: VectorStore,
        embedder: EmbeddingGenerator | None = None,
        llm: LLMProvider | None = None,
    ) -> "MemoryService":
        return cls(
            store,
            embedder or EmbeddingGenerator.from_settings(settings),
            llm if llm is not None else build_llm_provider(settings),
            conflict_threshold=settings.conflict_threshold,
            conflict_top_k=settings.conflict_top_k,
            default_search_threshold=settings.default_search_threshold,
            default_search_limit=settings.default_search_limit,
            max_search_limit=settings.max_search_limit,
            resolver_policy=ResolverPolicy.from_settings(settings),
            llm_temperature=settings.llm_temperature,
            llm_max_tokens=settings.llm_max_tokens,
            store_timeout_seconds=settings.provider_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Bulk writes
    # ------------------------------------------------------------------

    async def store_conversation_embeddings(
        self, scope_id: str, segments: list[Segment]
    ) -> list[MemoryEntry]:
        """Embed and insert *segments* without conflict checks (bulk import path)."""
        require_scope(scope_id)
        if not segments:
            return []
        vectors = await self.embedder.generate([s.text for s in segments])
        now = utcnow()
        entries = [
            MemoryEntry(
                scope_id=scope_id,
                text=segment.text,
                vector=vector,
                type=segment.type,
                metadata=dict(segment.metadata),
                confidence=segment.confidence,
                created_at=now,
            )
            for segment, vector in zip(segments, vectors)
        ]
        ids = await self.store.insert(scope_id, entries)
        for entry, entry_id in zip(entries, ids):
            entry.id = entry_id
        logger.info("Stored %d segments for scope %s", len(entries), scope_id)
        return entries

    async def process_business_conversations(
        self, scope_id: str, conversations: list[str]
    ) -> list[MemoryEntry]:
        return await self.store_conversation_embeddings(
            scope_id,
            [Segment(text=c, type=MemoryType.CONVERSATION) for c in conversations],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search_similar_conversations(
        self,
        scope_id: str,
        query_text: str,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> list[SearchMatch]:
        return await self.search.search_text(
            scope_id,
            query_text,
            self.default_search_threshold if threshold is None else threshold,
            self.default_search_limit if top_k is None else top_k,
        )

    async def get_memory_conflicts(
        self, scope_id: str, threshold: float | None = None
    ) -> list[ConflictGroup]:
        return await self.detector.scan(scope_id, threshold)

    async def get_business_knowledge_summary(self, scope_id: str) -> KnowledgeSummary:
        current = await self.store.count_by_type(scope_id)
        everything = await self.store.count_by_type(scope_id, include_superseded=True)
        recent = await self.store.list_entries(scope_id)
        total_current = sum(current.values())
        return KnowledgeSummary(
            scope_id=scope_id,
            counts={t.value: current.get(t.value, 0) for t in MemoryType},
            total_current=total_current,
            superseded=sum(everything.values()) - total_current,
            recent=[e.text for e in recent[:_SUMMARY_RECENT]],
        )

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_memory(
        self,
        scope_id: str,
        candidate: UpdateCandidate,
        mode: UpdateMode = UpdateMode.AUTO,
    ) -> UpdateResult:
        require_scope(scope_id)
        if candidate.scope_id != scope_id:
            raise TenantScopeViolation(
                f"candidate belongs to scope {candidate.scope_id!r}, not {scope_id!r}"
            )
        return await self.orchestrator.update_memory(candidate, mode)

    async def apply_resolution(
        self,
        scope_id: str,
        candidate: UpdateCandidate,
        resolution: Resolution,
    ) -> UpdateResult:
        require_scope(scope_id)
        if candidate.scope_id != scope_id:
            raise TenantScopeViolation(
                f"candidate belongs to scope {candidate.scope_id!r}, not {scope_id!r}"
            )
        return await self.orchestrator.apply_resolution(candidate, resolution)

    async def process_conversation(
        self,
        scope_id: str,
        conversation_text: str,
        mode: UpdateMode = UpdateMode.AUTO,
    ) -> UpdateResult | None:
        """Extract an update from *conversation_text* and apply it.

        Returns None when the conversation contains no update.
        """
        try:
            candidate = await self.extractor.extract(scope_id, conversation_text)
        except ProviderError as exc:
            logger.warning("Extraction failed for scope %s: %s", scope_id, exc)
            return UpdateResult(
                scope_id=scope_id,
                action="failed",
                state=CandidateState.FAILED,
                error=exc.kind,
                error_message=str(exc),
            )
        if candidate is None:
            return None
        return await self.orchestrator.update_memory(candidate, mode)

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete_memory(self, scope_id: str, memory_id: str) -> bool:
        return await self.store.delete(scope_id, [memory_id]) > 0

    async def delete_scope(self, scope_id: str) -> int:
        removed = await self.store.delete_scope(scope_id)
        logger.info("Deleted scope %s (%d entries)", scope_id, removed)
        return removed
