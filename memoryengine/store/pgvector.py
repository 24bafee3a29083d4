"""PostgreSQL + pgvector implementation of the VectorStore contract.

Query pattern (shared with the migration's HNSW index):
    SELECT ..., embedding <=> :vector AS distance
    FROM memory_entries
    WHERE scope_id = :scope_id AND superseded_by IS NULL
      AND embedding <=> :vector <= 1 - :threshold
    ORDER BY distance ASC, created_at DESC
    LIMIT :top_k

Similarity is reported as 1 - cosine_distance.

The scope filter must be applied during the HNSW index scan, not after it:
with a plain scan Postgres takes the hnsw.ef_search nearest rows of the whole
table and only then drops other scopes' rows, which can leave a scope with no
matches at all. query() therefore sets hnsw.iterative_scan (pgvector 0.8.0 or
newer) for its transaction so the index keeps scanning until LIMIT rows of
the scope have been found.

Every session block runs under store_call(), bounded by timeout_seconds.

supersede() runs the insert and the UPDATE ... SET superseded_by inside one
transaction (session.begin()); if the UPDATE does not touch exactly the
requested rows the transaction is rolled back and nothing is written.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from memoryengine.db.models import MemoryEntryRow
from memoryengine.errors import TenantScopeViolation
from memoryengine.memory.types import MemoryEntry, SearchMatch, utcnow
from memoryengine.store.base import VectorStore, check_rows_in_scope, require_scope, store_call

logger = logging.getLogger(__name__)

_ITERATIVE_SCAN_MODES = ("strict_order", "relaxed_order")


def _to_entry(row: MemoryEntryRow) -> MemoryEntry:
    return MemoryEntry(
        id=str(row.id),
        scope_id=row.scope_id,
        text=row.text,
        vector=[float(x) for x in row.embedding],
        type=row.type,
        metadata=dict(row.entry_metadata or {}),
        confidence=row.confidence,
        created_at=row.created_at,
        superseded_by=str(row.superseded_by) if row.superseded_by else None,
        superseded_at=row.superseded_at,
    )


def _parse_ids(ids: list[str]) -> list[uuid.UUID]:
    parsed = []
    for entry_id in ids:
        try:
            parsed.append(uuid.UUID(str(entry_id)))
        except ValueError:
            logger.debug("pgvector store: ignoring malformed id %r", entry_id)
    return parsed


class PgVectorStore(VectorStore):
    def __init__(
        self,
        session_factory: async_sessionmaker,
        dimensions: int,
        timeout_seconds: float | None = 20.0,
        iterative_scan: str | None = "strict_order",
    ) -> None:
        super().__init__(dimensions)
        if iterative_scan is not None and iterative_scan not in _ITERATIVE_SCAN_MODES:
            raise ValueError(
                f"iterative_scan must be one of {_ITERATIVE_SCAN_MODES} or None, got {iterative_scan!r}"
            )
        self._session_factory = session_factory
        self._timeout = timeout_seconds
        self._iterative_scan = iterative_scan

    def _to_row(self, scope_id: str, entry: MemoryEntry) -> MemoryEntryRow:
        self.check_vector(entry.vector)
        if entry.scope_id != scope_id:
            raise TenantScopeViolation(
                f"cannot write an entry for scope {entry.scope_id!r} into scope {scope_id!r}"
            )
        return MemoryEntryRow(
            id=uuid.uuid4(),
            scope_id=scope_id,
            text=entry.text,
            embedding=list(entry.vector),
            type=entry.type,
            entry_metadata=dict(entry.metadata),
            confidence=entry.confidence,
            created_at=entry.created_at or utcnow(),
        )

    async def insert(self, scope_id: str, entries: list[MemoryEntry]) -> list[str]:
        require_scope(scope_id)
        rows = [self._to_row(scope_id, e) for e in entries]
        async with store_call("insert", self._timeout):
            async with self._session_factory() as session:
                async with session.begin():
                    session.add_all(rows)
        return [str(r.id) for r in rows]

    async def query(
        self,
        scope_id: str,
        vector: list[float],
        threshold: float,
        top_k: int,
    ) -> list[SearchMatch]:
        require_scope(scope_id)
        self.check_vector(vector)
        distance_col = MemoryEntryRow.embedding.cosine_distance(vector).label("distance")
        stmt = (
            select(MemoryEntryRow, distance_col)
            .where(MemoryEntryRow.scope_id == scope_id)
            .where(MemoryEntryRow.superseded_by.is_(None))
            .where(MemoryEntryRow.embedding.cosine_distance(vector) <= 1.0 - threshold)
            .order_by(distance_col.asc(), MemoryEntryRow.created_at.desc())
            .limit(top_k)
        )
        async with store_call("query", self._timeout):
            async with self._session_factory() as session:
                if self._iterative_scan:
                    # SET LOCAL lasts until the end of the implicit transaction
                    await session.execute(
                        text(f"SET LOCAL hnsw.iterative_scan = {self._iterative_scan}")
                    )
                rows = (await session.execute(stmt)).all()

        matches = [
            SearchMatch(entry=_to_entry(row), similarity=1.0 - float(distance))
            for row, distance in rows
        ]
        check_rows_in_scope(scope_id, (m.entry for m in matches))
        return matches

    async def delete(self, scope_id: str, ids: list[str]) -> int:
        require_scope(scope_id)
        uuids = _parse_ids(ids)
        if not uuids:
            return 0
        async with store_call("delete", self._timeout):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(MemoryEntryRow)
                        .where(MemoryEntryRow.scope_id == scope_id)
                        .where(MemoryEntryRow.id.in_(uuids))
                    )
        return result.rowcount or 0

    async def delete_scope(self, scope_id: str) -> int:
        require_scope(scope_id)
        async with store_call("delete_scope", self._timeout):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(MemoryEntryRow).where(MemoryEntryRow.scope_id == scope_id)
                    )
        logger.info("pgvector store: deleted %d entries for scope %s", result.rowcount or 0, scope_id)
        return result.rowcount or 0

    async def supersede(
        self,
        scope_id: str,
        entry: MemoryEntry,
        superseded_ids: list[str],
    ) -> str:
        require_scope(scope_id)
        row = self._to_row(scope_id, entry)
        old_ids = _parse_ids(superseded_ids)
        if len(old_ids) != len(superseded_ids):
            raise ValueError(f"malformed ids in {superseded_ids!r}")

        async with store_call("supersede", self._timeout):
            async with self._session_factory() as session:
                async with session.begin():
                    if old_ids:
                        foreign = await session.execute(
                            select(func.count())
                            .select_from(MemoryEntryRow)
                            .where(MemoryEntryRow.id.in_(old_ids))
                            .where(MemoryEntryRow.scope_id != scope_id)
                        )
                        if foreign.scalar():
                            raise TenantScopeViolation(
                                "supersede touched entries that belong to another scope"
                            )
                    session.add(row)
                    await session.flush()
                    if old_ids:
                        result = await session.execute(
                            update(MemoryEntryRow)
                            .where(MemoryEntryRow.scope_id == scope_id)
                            .where(MemoryEntryRow.id.in_(old_ids))
                            .where(MemoryEntryRow.superseded_by.is_(None))
                            .values(superseded_by=row.id, superseded_at=utcnow())
                        )
                        if result.rowcount != len(old_ids):
                            # Raising inside session.begin() rolls back the insert as well
                            raise ValueError(
                                f"expected to supersede {len(old_ids)} current entries, "
                                f"matched {result.rowcount}"
                            )
        return str(row.id)

    async def list_entries(
        self, scope_id: str, include_superseded: bool = False
    ) -> list[MemoryEntry]:
        require_scope(scope_id)
        stmt = select(MemoryEntryRow).where(MemoryEntryRow.scope_id == scope_id)
        if not include_superseded:
            stmt = stmt.where(MemoryEntryRow.superseded_by.is_(None))
        stmt = stmt.order_by(MemoryEntryRow.created_at.desc())
        async with store_call("list_entries", self._timeout):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        entries = [_to_entry(r) for r in rows]
        check_rows_in_scope(scope_id, entries)
        return entries

    async def get(self, scope_id: str, entry_id: str) -> MemoryEntry | None:
        require_scope(scope_id)
        uuids = _parse_ids([entry_id])
        if not uuids:
            return None
        async with store_call("get", self._timeout):
            async with self._session_factory() as session:
                row = (
                    await session.execute(
                        select(MemoryEntryRow)
                        .where(MemoryEntryRow.scope_id == scope_id)
                        .where(MemoryEntryRow.id == uuids[0])
                    )
                ).scalar_one_or_none()
        return _to_entry(row) if row is not None else None

    async def count_by_type(
        self, scope_id: str, include_superseded: bool = False
    ) -> dict[str, int]:
        require_scope(scope_id)
        stmt = (
            select(MemoryEntryRow.type, func.count())
            .where(MemoryEntryRow.scope_id == scope_id)
            .group_by(MemoryEntryRow.type)
        )
        if not include_superseded:
            stmt = stmt.where(MemoryEntryRow.superseded_by.is_(None))
        async with store_call("count_by_type", self._timeout):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        return {memory_type.value: int(count) for memory_type, count in rows}
