"""Memory update orchestrator — the write path of the engine.

Sequence for one candidate (state in brackets):

  [extracted] -> embed -> [embedded] -> detect -> [conflict_checked]
    manual mode with conflicts: return them, persist nothing
    otherwise: resolve -> [resolved] -> persist -> [persisted | rejected]
  any provider error along the way -> [failed] with its ErrorKind

The detect-resolve-write part runs under a per-scope asyncio.Lock, so two
concurrent candidates about the same topic cannot both observe "no conflict"
and both insert. Locks are per scope; different scopes never wait on each
other. Embedding the candidate happens before the lock is taken.

Store calls (the conflict query and the write) are bounded by
store_timeout_seconds and their failures mapped to provider errors through
store_call(), so a dead or hung database yields a failed result and releases
the scope lock instead of blocking every later update of the scope.

Persistence is one store call (insert, or the atomic supersede), and the
task's cancellation state is checked right before it, so a cancelled update
never leaves a partial write.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from memoryengine.conflict.detector import ConflictDetector
from memoryengine.conflict.lexical import derive_topic
from memoryengine.conflict.resolver import ConflictResolver
from memoryengine.errors import ProviderError
from memoryengine.memory.types import (
    CandidateState,
    ConflictGroup,
    MemoryEntry,
    Resolution,
    ResolutionAction,
    UpdateCandidate,
    UpdateMode,
    UpdateResult,
    utcnow,
)
from memoryengine.pipeline.embedder import EmbeddingGenerator
from memoryengine.store.base import VectorStore, require_scope, store_call

logger = logging.getLogger(__name__)

# Past-tense action names reported in UpdateResult.action
_APPLIED = {
    ResolutionAction.CREATE: "created",
    ResolutionAction.MERGE: "merged",
    ResolutionAction.REPLACE: "replaced",
    ResolutionAction.KEEP_BOTH: "kept_both",
    ResolutionAction.REJECT: "rejected",
}


def combine_groups(groups: list[ConflictGroup]) -> ConflictGroup | None:
    """Collapse the candidate's conflict groups into the one group it resolves against."""
    if not groups:
        return None
    if len(groups) == 1:
        return groups[0]
    members = [m for g in groups for m in g.members]
    similarities: dict[str, float] = {}
    for g in groups:
        similarities.update(g.similarities)
    weight = sum(len(g.members) for g in groups)
    return ConflictGroup(
        topic=derive_topic([m.text for m in members]),
        members=members,
        pairwise_similarity=sum(g.pairwise_similarity * len(g.members) for g in groups) / weight,
        similarities=similarities,
    )


class ScopeLocks:
    """One asyncio.Lock per scope, held only while some task uses it.

    A scope's lock is dropped once its last holder or waiter leaves, so the
    table stays as small as the number of scopes being written right now.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, scope_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(scope_id, asyncio.Lock())
        self._users[scope_id] = self._users.get(scope_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[scope_id] -= 1
            if not self._users[scope_id]:
                del self._users[scope_id]
                del self._locks[scope_id]


def _raise_if_cancelling() -> None:
    task = asyncio.current_task()
    if task is not None and task.cancelling():
        raise asyncio.CancelledError()


class MemoryUpdateOrchestrator:
    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingGenerator,
        detector: ConflictDetector,
        resolver: ConflictResolver,
        locks: ScopeLocks | None = None,
        store_timeout_seconds: float | None = 20.0,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.detector = detector
        self.resolver = resolver
        self.locks = locks or ScopeLocks()
        self.store_timeout_seconds = store_timeout_seconds

    async def update_memory(
        self,
        candidate: UpdateCandidate,
        mode: UpdateMode = UpdateMode.AUTO,
    ) -> UpdateResult:
        scope_id = require_scope(candidate.scope_id)
        state = CandidateState.EXTRACTED
        logger.info("Memory update: scope=%s mode=%s", scope_id, mode.value)
        try:
            vector = await self.embedder.embed_one(candidate.text)
            state = CandidateState.EMBEDDED

            async with self.locks.hold(scope_id):
                async with store_call("conflict query", self.store_timeout_seconds):
                    groups = await self.detector.detect(scope_id, vector, candidate.text)
                state = CandidateState.CONFLICT_CHECKED

                if groups and mode is UpdateMode.MANUAL:
                    logger.info(
                        "Memory update: %d conflict group(s) in manual mode, deferring to caller",
                        len(groups),
                    )
                    return UpdateResult(
                        scope_id=scope_id,
                        action="conflicts_detected",
                        state=state,
                        conflicts=groups,
                    )

                group = combine_groups(groups)
                resolution = await self.resolver.resolve(candidate, group)
                state = CandidateState.RESOLVED
                return await self._apply(candidate, vector, groups, group, resolution)
        except ProviderError as exc:
            logger.warning(
                "Memory update failed at %s: %s (%s)", state.value, exc, exc.kind.value
            )
            return UpdateResult(
                scope_id=scope_id,
                action="failed",
                state=CandidateState.FAILED,
                error=exc.kind,
                error_message=str(exc),
            )

    async def apply_resolution(
        self,
        candidate: UpdateCandidate,
        resolution: Resolution,
    ) -> UpdateResult:
        """Persist a caller-chosen resolution for a candidate deferred in manual mode.

        Conflicts are re-detected under the scope lock, so the decision is applied
        to the current state of the scope rather than to what the caller saw.
        """
        scope_id = require_scope(candidate.scope_id)
        try:
            vector = await self.embedder.embed_one(candidate.text)
            async with self.locks.hold(scope_id):
                async with store_call("conflict query", self.store_timeout_seconds):
                    groups = await self.detector.detect(scope_id, vector, candidate.text)
                group = combine_groups(groups)
                if resolution.action is ResolutionAction.CREATE and group is not None:
                    raise ValueError("create is only valid when there are no conflicts")
                if resolution.action is ResolutionAction.MERGE and not resolution.merged_text:
                    raise ValueError("merge requires merged_text")
                return await self._apply(candidate, vector, groups, group, resolution)
        except ProviderError as exc:
            logger.warning("Manual resolution failed: %s (%s)", exc, exc.kind.value)
            return UpdateResult(
                scope_id=scope_id,
                action="failed",
                state=CandidateState.FAILED,
                error=exc.kind,
                error_message=str(exc),
            )

    async def _apply(
        self,
        candidate: UpdateCandidate,
        vector: list[float],
        groups: list[ConflictGroup],
        group: ConflictGroup | None,
        resolution: Resolution,
    ) -> UpdateResult:
        scope_id = candidate.scope_id
        action = resolution.action

        if action is ResolutionAction.REJECT:
            logger.info("Memory update: rejected (%s)", resolution.reason)
            return UpdateResult(
                scope_id=scope_id,
                action=_APPLIED[action],
                state=CandidateState.REJECTED,
                conflicts=groups,
                resolution=resolution,
            )

        metadata = {
            **candidate.metadata,
            "reason": candidate.reason,
            "resolution": action.value,
        }
        text = candidate.text
        superseded: list[str] = []

        if action is ResolutionAction.MERGE:
            text = resolution.merged_text or candidate.text
            vector = await self.embedder.embed_one(text)
            superseded = group.member_ids if group else []
            metadata["merged_from"] = superseded
            metadata["candidate_text"] = candidate.text
        elif action is ResolutionAction.REPLACE:
            superseded = group.member_ids if group else []
            metadata["replaces"] = superseded
        elif action is ResolutionAction.KEEP_BOTH and resolution.needs_review:
            metadata["needs_review"] = True
            metadata["conflicts_with"] = group.member_ids if group else []

        entry = MemoryEntry(
            scope_id=scope_id,
            text=text,
            vector=vector,
            type=candidate.type,
            metadata=metadata,
            confidence=candidate.confidence,
            created_at=utcnow(),
        )

        _raise_if_cancelling()
        async with store_call("write", self.store_timeout_seconds):
            if superseded:
                memory_id = await self.store.supersede(scope_id, entry, superseded)
            else:
                memory_id = (await self.store.insert(scope_id, [entry]))[0]

        logger.info(
            "Memory update: %s %s (superseded=%d, confidence=%.2f)",
            _APPLIED[action],
            memory_id,
            len(superseded),
            resolution.confidence,
        )
        return UpdateResult(
            scope_id=scope_id,
            action=_APPLIED[action],
            state=CandidateState.PERSISTED,
            memory_id=memory_id,
            conflicts=groups,
            resolution=resolution,
        )
