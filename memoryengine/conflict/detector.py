"""Conflict detection: group existing entries that plausibly state the same fact.

detect() runs one bounded query at the conflict threshold and builds an
undirected graph over the candidate plus its top-K neighbours, with an edge
wherever pairwise cosine similarity >= threshold. Connected components that
contain at least one stored entry become ConflictGroups. Because grouping is
by connectivity, A~B and B~C put A, B and C in the same group even when A and
C are below the threshold.

scan() applies the same construction to a whole scope (every current entry
and its top-K neighbours) for conflict analysis; only components with two or
more entries are reported.

Neither method ever compares all pairs of a scope: the graph is restricted to
the neighbours the store returns.
"""

from __future__ import annotations

import logging
from itertools import combinations

import numpy as np

from memoryengine.conflict.lexical import derive_topic
from memoryengine.memory.types import ConflictGroup, MemoryEntry
from memoryengine.search.similarity import SimilaritySearch
from memoryengine.store.base import require_scope

logger = logging.getLogger(__name__)

# Graph node id for the candidate, which has no store id yet
_CANDIDATE = "__candidate__"


def cosine_similarity(a, b) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class _DisjointSet:
    def __init__(self) -> None:
        self._parent: dict[str, str] = {}

    def add(self, node: str) -> None:
        self._parent.setdefault(node, node)

    def find(self, node: str) -> str:
        root = node
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[node] != root:
            self._parent[node], node = root, self._parent[node]
        return root

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Deterministic root choice keeps component ordering stable
            if rb < ra:
                ra, rb = rb, ra
            self._parent[rb] = ra

    def components(self) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = {}
        for node in self._parent:
            groups.setdefault(self.find(node), []).append(node)
        return groups


def _build_groups(
    entries: dict[str, MemoryEntry],
    edges: dict[tuple[str, str], float],
    anchor_similarity: dict[str, float],
    min_members: int,
) -> list[ConflictGroup]:
    dsu = _DisjointSet()
    for node in entries:
        dsu.add(node)
    for a, b in edges:
        dsu.add(a)
        dsu.add(b)
        dsu.union(a, b)

    groups: list[ConflictGroup] = []
    for nodes in dsu.components().values():
        member_ids = [n for n in nodes if n != _CANDIDATE]
        if len(member_ids) < min_members:
            continue
        node_set = set(nodes)
        weights = [w for (a, b), w in edges.items() if a in node_set and b in node_set]
        if not weights:
            continue
        # Oldest first so topic and ordering are stable across calls
        members = sorted(
            (entries[i] for i in member_ids),
            key=lambda e: (e.created_at, e.id),
        )
        groups.append(
            ConflictGroup(
                topic=derive_topic([m.text for m in members]),
                members=members,
                pairwise_similarity=sum(weights) / len(weights),
                similarities={m.id: anchor_similarity.get(m.id, 0.0) for m in members},
            )
        )
    groups.sort(key=lambda g: (-g.pairwise_similarity, g.member_ids))
    return groups


def _edge_key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class ConflictDetector:
    def __init__(
        self,
        search: SimilaritySearch,
        threshold: float = 0.85,
        top_k: int = 10,
    ) -> None:
        self.search = search
        self.threshold = threshold
        self.top_k = top_k

    async def detect(
        self,
        scope_id: str,
        candidate_vector: list[float],
        candidate_text: str,
    ) -> list[ConflictGroup]:
        """Return the conflict groups the candidate belongs to (empty = no conflict)."""
        require_scope(scope_id)
        matches = await self.search.search(scope_id, candidate_vector, self.threshold, self.top_k)
        if not matches:
            return []

        entries = {m.entry.id: m.entry for m in matches}
        anchor = {m.entry.id: m.similarity for m in matches}
        edges: dict[tuple[str, str], float] = {}
        for match in matches:
            if match.similarity >= self.threshold:
                edges[_edge_key(_CANDIDATE, match.entry.id)] = match.similarity
        for left, right in combinations(matches, 2):
            sim = cosine_similarity(left.entry.vector, right.entry.vector)
            if sim >= self.threshold:
                edges[_edge_key(left.entry.id, right.entry.id)] = sim

        groups = _build_groups(entries, edges, anchor, min_members=1)
        logger.debug(
            "Conflict detector: scope=%s candidate=%.60r -> %d neighbours, %d groups",
            scope_id,
            candidate_text,
            len(matches),
            len(groups),
        )
        return groups

    async def scan(self, scope_id: str, threshold: float | None = None) -> list[ConflictGroup]:
        """Find every group of two or more current entries that conflict with each other."""
        require_scope(scope_id)
        threshold = self.threshold if threshold is None else threshold
        current = await self.search.store.list_entries(scope_id)
        entries = {e.id: e for e in current}
        edges: dict[tuple[str, str], float] = {}
        best: dict[str, float] = {}

        for entry in current:
            # +1 because the entry finds itself
            neighbours = await self.search.search(scope_id, entry.vector, threshold, self.top_k + 1)
            for match in neighbours:
                other = match.entry.id
                if other == entry.id or other not in entries:
                    continue
                edges[_edge_key(entry.id, other)] = match.similarity
                best[entry.id] = max(best.get(entry.id, 0.0), match.similarity)
                best[other] = max(best.get(other, 0.0), match.similarity)

        groups = _build_groups(entries, edges, best, min_members=2)
        logger.info(
            "Conflict scan: scope=%s entries=%d threshold=%.2f -> %d groups",
            scope_id,
            len(current),
            threshold,
            len(groups),
        )
        return groups
