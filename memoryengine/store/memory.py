"""In-process vector store backed by numpy.

Used by the test suite, local experiments and the CLI's --in-memory mode.
Entries for all scopes live in one dict keyed by id; every read filters by
scope_id before any similarity math, and every write happens under a single
asyncio.Lock so supersede() is atomic with respect to other store calls.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid

import numpy as np

from memoryengine.errors import TenantScopeViolation
from memoryengine.memory.types import MemoryEntry, SearchMatch, utcnow
from memoryengine.store.base import VectorStore, check_rows_in_scope, require_scope

logger = logging.getLogger(__name__)


def _unit(vector) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else arr


class InMemoryVectorStore(VectorStore):
    def __init__(self, dimensions: int) -> None:
        super().__init__(dimensions)
        self._entries: dict[str, MemoryEntry] = {}
        self._lock = asyncio.Lock()

    def _stamp(self, scope_id: str, entry: MemoryEntry) -> MemoryEntry:
        self.check_vector(entry.vector)
        if entry.scope_id != scope_id:
            raise TenantScopeViolation(
                f"cannot write an entry for scope {entry.scope_id!r} into scope {scope_id!r}"
            )
        stored = copy.deepcopy(entry)
        stored.id = str(uuid.uuid4())
        stored.created_at = stored.created_at or utcnow()
        stored.superseded_by = None
        stored.superseded_at = None
        return stored

    def _scoped(self, scope_id: str, include_superseded: bool) -> list[MemoryEntry]:
        rows = [
            e for e in self._entries.values()
            if e.scope_id == scope_id and (include_superseded or e.is_current)
        ]
        check_rows_in_scope(scope_id, rows)
        return rows

    async def insert(self, scope_id: str, entries: list[MemoryEntry]) -> list[str]:
        require_scope(scope_id)
        stored = [self._stamp(scope_id, e) for e in entries]
        async with self._lock:
            for entry in stored:
                self._entries[entry.id] = entry
        return [e.id for e in stored]

    async def query(
        self,
        scope_id: str,
        vector: list[float],
        threshold: float,
        top_k: int,
    ) -> list[SearchMatch]:
        require_scope(scope_id)
        self.check_vector(vector)
        rows = self._scoped(scope_id, include_superseded=False)
        if not rows or top_k < 1:
            return []

        matrix = np.vstack([_unit(e.vector) for e in rows])
        scores = matrix @ _unit(vector)
        matches = [
            SearchMatch(entry=copy.deepcopy(entry), similarity=float(score))
            for entry, score in zip(rows, scores)
            if score >= threshold
        ]
        matches.sort(key=lambda m: (-m.similarity, -m.entry.created_at.timestamp(), m.entry.id))
        return matches[:top_k]

    async def delete(self, scope_id: str, ids: list[str]) -> int:
        require_scope(scope_id)
        removed = 0
        async with self._lock:
            for entry_id in ids:
                entry = self._entries.get(entry_id)
                if entry is not None and entry.scope_id == scope_id:
                    del self._entries[entry_id]
                    removed += 1
        return removed

    async def delete_scope(self, scope_id: str) -> int:
        require_scope(scope_id)
        async with self._lock:
            doomed = [i for i, e in self._entries.items() if e.scope_id == scope_id]
            for entry_id in doomed:
                del self._entries[entry_id]
        logger.info("In-memory store: deleted %d entries for scope %s", len(doomed), scope_id)
        return len(doomed)

    async def supersede(
        self,
        scope_id: str,
        entry: MemoryEntry,
        superseded_ids: list[str],
    ) -> str:
        require_scope(scope_id)
        stored = self._stamp(scope_id, entry)
        async with self._lock:
            # Validate everything before mutating anything
            for old_id in superseded_ids:
                old = self._entries.get(old_id)
                if old is None:
                    raise ValueError(f"entry {old_id} does not exist")
                if old.scope_id != scope_id:
                    raise TenantScopeViolation(
                        f"entry {old_id} belongs to another scope and cannot be superseded"
                    )
                if not old.is_current:
                    raise ValueError(f"entry {old_id} is already superseded")
            now = utcnow()
            self._entries[stored.id] = stored
            for old_id in superseded_ids:
                self._entries[old_id].superseded_by = stored.id
                self._entries[old_id].superseded_at = now
        return stored.id

    async def list_entries(
        self, scope_id: str, include_superseded: bool = False
    ) -> list[MemoryEntry]:
        require_scope(scope_id)
        rows = self._scoped(scope_id, include_superseded)
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return [copy.deepcopy(e) for e in rows]

    async def get(self, scope_id: str, entry_id: str) -> MemoryEntry | None:
        require_scope(scope_id)
        entry = self._entries.get(entry_id)
        if entry is None or entry.scope_id != scope_id:
            return None
        return copy.deepcopy(entry)

    async def count_by_type(
        self, scope_id: str, include_superseded: bool = False
    ) -> dict[str, int]:
        require_scope(scope_id)
        counts: dict[str, int] = {}
        for entry in self._scoped(scope_id, include_superseded):
            counts[entry.type.value] = counts.get(entry.type.value, 0) + 1
        return counts
