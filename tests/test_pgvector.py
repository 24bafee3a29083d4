"""
Tests for the pgvector store that need no database.

Scope and dimension checks run before a session is opened, so a store built
with a session factory that fails on use is enough to exercise them. Session
behaviour (statements issued, failures, hangs) is exercised with a scripted
fake session.
"""

import asyncio
import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from memoryengine.errors import (
    DimensionMismatch,
    ProviderError,
    TenantScopeViolation,
    TransientError,
)
from memoryengine.memory.types import MemoryType
from memoryengine.store.pgvector import PgVectorStore, _parse_ids, _to_entry

from tests.fakes import DIMS, OTHER_SCOPE, SCOPE, keyword_vector, make_entry


def no_session():
    raise AssertionError("the database must not be touched")


@pytest.fixture
def pg_store() -> PgVectorStore:
    return PgVectorStore(no_session, DIMS)


@pytest.mark.asyncio
class TestChecksBeforeIO:
    async def test_blank_scope(self, pg_store):
        with pytest.raises(TenantScopeViolation):
            await pg_store.list_entries("")

    async def test_entry_for_another_scope(self, pg_store):
        with pytest.raises(TenantScopeViolation):
            await pg_store.insert(SCOPE, [make_entry("We open at 9", scope_id=OTHER_SCOPE)])

    async def test_wrong_dimensions(self, pg_store):
        with pytest.raises(DimensionMismatch):
            await pg_store.query(SCOPE, [0.1, 0.2], 0.5, 5)

    async def test_malformed_supersede_ids(self, pg_store):
        with pytest.raises(ValueError):
            await pg_store.supersede(SCOPE, make_entry("We open at 10"), ["not-a-uuid"])

    async def test_delete_with_only_malformed_ids_is_a_no_op(self, pg_store):
        assert await pg_store.delete(SCOPE, ["nope"]) == 0

    async def test_get_with_malformed_id(self, pg_store):
        assert await pg_store.get(SCOPE, "nope") is None


class TestRowMapping:
    def test_unknown_iterative_scan_mode_is_rejected(self):
        with pytest.raises(ValueError):
            PgVectorStore(no_session, DIMS, iterative_scan="sideways")

    def test_parse_ids_skips_malformed(self):
        good = uuid.uuid4()
        assert _parse_ids([str(good), "bad"]) == [good]

    def test_row_round_trip(self, pg_store):
        entry = make_entry("We open at 9", memory_type=MemoryType.FAQ, metadata={"source": "faq"})
        row = pg_store._to_row(SCOPE, entry)

        mapped = _to_entry(row)

        assert mapped.id == str(row.id)
        assert mapped.scope_id == SCOPE
        assert mapped.type is MemoryType.FAQ
        assert mapped.metadata == {"source": "faq"}
        assert mapped.vector == pytest.approx(entry.vector)
        assert mapped.is_current


class _Result:
    def __init__(self, rows) -> None:
        self._rows = rows

    def all(self):
        return list(self._rows)

    def scalar_one_or_none(self):
        return self._rows[0] if self._rows else None


class ScriptedSession:
    """Stands in for AsyncSession: records statements, optionally fails or hangs."""

    def __init__(self, error: Exception | None = None, hang: bool = False) -> None:
        self.statements: list[str] = []
        self.error = error
        self.hang = hang

    def __call__(self) -> "ScriptedSession":
        return self

    async def __aenter__(self) -> "ScriptedSession":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def execute(self, stmt):
        self.statements.append(str(stmt))
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return _Result([])


@pytest.mark.asyncio
class TestQuerySession:
    async def test_query_enables_iterative_index_scan_first(self):
        session = ScriptedSession()
        store = PgVectorStore(session, DIMS)

        assert await store.query(SCOPE, keyword_vector("We open at 9"), 0.5, 5) == []

        assert session.statements[0] == "SET LOCAL hnsw.iterative_scan = strict_order"
        assert "memory_entries" in session.statements[1]
        assert "scope_id" in session.statements[1]

    async def test_iterative_scan_can_be_disabled(self):
        session = ScriptedSession()
        store = PgVectorStore(session, DIMS, iterative_scan=None)

        await store.query(SCOPE, keyword_vector("We open at 9"), 0.5, 5)

        assert len(session.statements) == 1
        assert "hnsw" not in session.statements[0]


@pytest.mark.asyncio
class TestSessionFailures:
    async def test_refused_connection_is_transient(self):
        session = ScriptedSession(
            error=OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))
        )
        store = PgVectorStore(session, DIMS)

        with pytest.raises(TransientError, match="db down"):
            await store.query(SCOPE, keyword_vector("We open at 9"), 0.5, 5)

    async def test_hung_query_times_out_as_transient(self):
        store = PgVectorStore(ScriptedSession(hang=True), DIMS, timeout_seconds=0.05)

        with pytest.raises(TransientError, match="timed out"):
            await asyncio.wait_for(store.get(SCOPE, str(uuid.uuid4())), 5)

    async def test_other_database_errors_are_not_retryable(self):
        session = ScriptedSession(error=IntegrityError("SELECT 1", {}, Exception("constraint")))
        store = PgVectorStore(session, DIMS)

        with pytest.raises(ProviderError) as excinfo:
            await store.get(SCOPE, str(uuid.uuid4()))

        assert not isinstance(excinfo.value, TransientError)
        assert not excinfo.value.retryable
