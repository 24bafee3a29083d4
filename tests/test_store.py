"""
Tests for the in-memory vector store.

Tests:
- Scope validation (fail closed)
- Tenant isolation of queries
- Threshold, ranking and top_k
- Atomic supersede
- Deletes and counts
"""

import pytest

from memoryengine.errors import DimensionMismatch, TenantScopeViolation
from memoryengine.memory.types import MemoryType

from tests.fakes import OTHER_SCOPE, SCOPE, angle_vector, keyword_vector, make_entry


@pytest.mark.asyncio
class TestScopeValidation:
    @pytest.mark.parametrize("scope_id", [None, "", "   ", 42])
    async def test_query_without_scope_is_rejected(self, store, scope_id):
        with pytest.raises(TenantScopeViolation):
            await store.query(scope_id, keyword_vector("open 9-5"), 0.5, 5)

    async def test_insert_into_wrong_scope_is_rejected(self, store):
        with pytest.raises(TenantScopeViolation):
            await store.insert(SCOPE, [make_entry("open 9-5", scope_id=OTHER_SCOPE)])
        assert await store.list_entries(SCOPE) == []
        assert await store.list_entries(OTHER_SCOPE) == []

    async def test_wrong_dimensions_are_rejected(self, store):
        with pytest.raises(DimensionMismatch):
            await store.insert(SCOPE, [make_entry("open 9-5", vector=[1.0, 0.0])])


@pytest.mark.asyncio
class TestQuery:
    async def test_never_returns_other_scopes(self, store):
        await store.insert(OTHER_SCOPE, [make_entry("We open at 9", scope_id=OTHER_SCOPE)])
        await store.insert(SCOPE, [make_entry("Phone: 555-0100")])

        matches = await store.query(SCOPE, keyword_vector("We open at 9"), 0.0, 10)

        assert [m.entry.text for m in matches] == ["Phone: 555-0100"]
        assert all(m.entry.scope_id == SCOPE for m in matches)

    async def test_ranked_by_similarity_and_capped(self, store):
        await store.insert(
            SCOPE,
            [
                make_entry("a", vector=angle_vector(40)),
                make_entry("b", vector=angle_vector(0)),
                make_entry("c", vector=angle_vector(20)),
                make_entry("d", vector=angle_vector(90)),
            ],
        )

        matches = await store.query(SCOPE, angle_vector(0), 0.5, 2)

        assert [m.entry.text for m in matches] == ["b", "c"]
        assert matches[0].similarity == pytest.approx(1.0)
        assert matches[0].distance == pytest.approx(0.0)

    async def test_threshold_filters_low_similarity(self, store):
        await store.insert(SCOPE, [make_entry("far", vector=angle_vector(60))])
        assert await store.query(SCOPE, angle_vector(0), 0.7, 5) == []
        assert len(await store.query(SCOPE, angle_vector(0), 0.5, 5)) == 1

    async def test_superseded_entries_are_not_returned(self, store):
        [old_id] = await store.insert(SCOPE, [make_entry("We open at 9")])
        await store.supersede(SCOPE, make_entry("We open at 10"), [old_id])

        matches = await store.query(SCOPE, keyword_vector("We open at 9"), 0.0, 10)
        assert [m.entry.text for m in matches] == ["We open at 10"]

    async def test_results_are_copies(self, store):
        await store.insert(SCOPE, [make_entry("We open at 9")])
        [match] = await store.query(SCOPE, keyword_vector("We open at 9"), 0.0, 1)
        match.entry.text = "tampered"
        [again] = await store.query(SCOPE, keyword_vector("We open at 9"), 0.0, 1)
        assert again.entry.text == "We open at 9"


@pytest.mark.asyncio
class TestSupersede:
    async def test_inserts_new_and_marks_old(self, store):
        ids = await store.insert(SCOPE, [make_entry("We open at 9"), make_entry("Hours: 9-5")])

        new_id = await store.supersede(SCOPE, make_entry("We open at 10"), ids)

        for old_id in ids:
            old = await store.get(SCOPE, old_id)
            assert old.superseded_by == new_id
            assert old.superseded_at is not None
        assert [e.id for e in await store.list_entries(SCOPE)] == [new_id]
        assert len(await store.list_entries(SCOPE, include_superseded=True)) == 3

    async def test_unknown_id_writes_nothing(self, store):
        [old_id] = await store.insert(SCOPE, [make_entry("We open at 9")])

        with pytest.raises(ValueError):
            await store.supersede(SCOPE, make_entry("We open at 10"), [old_id, "missing"])

        entries = await store.list_entries(SCOPE, include_superseded=True)
        assert [e.id for e in entries] == [old_id]
        assert entries[0].is_current

    async def test_already_superseded_id_is_rejected(self, store):
        [old_id] = await store.insert(SCOPE, [make_entry("We open at 9")])
        await store.supersede(SCOPE, make_entry("We open at 10"), [old_id])

        with pytest.raises(ValueError):
            await store.supersede(SCOPE, make_entry("We open at 11"), [old_id])

    async def test_foreign_id_is_a_scope_violation(self, store):
        [foreign_id] = await store.insert(
            OTHER_SCOPE, [make_entry("We open at 9", scope_id=OTHER_SCOPE)]
        )

        with pytest.raises(TenantScopeViolation):
            await store.supersede(SCOPE, make_entry("We open at 10"), [foreign_id])

        assert await store.list_entries(SCOPE) == []
        assert (await store.get(OTHER_SCOPE, foreign_id)).is_current


@pytest.mark.asyncio
class TestDeleteAndCount:
    async def test_delete_only_touches_own_scope(self, store):
        [own] = await store.insert(SCOPE, [make_entry("We open at 9")])
        [foreign] = await store.insert(OTHER_SCOPE, [make_entry("We open at 9", scope_id=OTHER_SCOPE)])

        assert await store.delete(SCOPE, [own, foreign]) == 1
        assert await store.get(OTHER_SCOPE, foreign) is not None

    async def test_delete_scope(self, store):
        await store.insert(SCOPE, [make_entry("We open at 9"), make_entry("Call 555")])
        await store.insert(OTHER_SCOPE, [make_entry("Menu", scope_id=OTHER_SCOPE)])

        assert await store.delete_scope(SCOPE) == 2
        assert await store.list_entries(SCOPE) == []
        assert len(await store.list_entries(OTHER_SCOPE)) == 1

    async def test_count_by_type(self, store):
        await store.insert(
            SCOPE,
            [
                make_entry("Q: hours?", memory_type=MemoryType.FAQ),
                make_entry("We open at 9"),
                make_entry("Call 555"),
            ],
        )
        assert await store.count_by_type(SCOPE) == {"faq": 1, "knowledge": 2}

    async def test_get_hides_other_scopes(self, store):
        [foreign] = await store.insert(OTHER_SCOPE, [make_entry("x", scope_id=OTHER_SCOPE)])
        assert await store.get(SCOPE, foreign) is None
