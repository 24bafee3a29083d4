"""
Tests for the conflict resolution pipeline.

Tests:
- Lexical stages: no conflict, duplicate, update markers
- Classifier verdicts, including merge
- Fallbacks: no classifier, malformed output, low confidence
- Provider errors propagate
"""

import json

import pytest

from memoryengine.conflict.resolver import ConflictResolver, ResolverPolicy
from memoryengine.errors import RateLimited
from memoryengine.memory.types import ConflictGroup, ResolutionAction

from tests.fakes import FakeLLM, make_candidate, make_entry


def group_of(*texts: str, similarity: float = 0.97) -> ConflictGroup:
    members = [make_entry(t, id=f"id-{i}") for i, t in enumerate(texts)]
    return ConflictGroup(
        topic="test",
        members=members,
        pairwise_similarity=similarity,
        similarities={m.id: similarity for m in members},
    )


def verdict(**fields) -> str:
    return json.dumps(fields)


@pytest.mark.asyncio
class TestLexicalStages:
    async def test_no_group_creates(self):
        resolution = await ConflictResolver().resolve(make_candidate("We open at 9"), None)
        assert resolution.action is ResolutionAction.CREATE
        assert resolution.confidence == 1.0

    async def test_near_identical_text_is_rejected(self):
        resolution = await ConflictResolver().resolve(
            make_candidate("We open at 9!"), group_of("we open at 9")
        )
        assert resolution.action is ResolutionAction.REJECT
        assert resolution.reason == "duplicate"

    async def test_duplicate_needs_high_vector_similarity(self):
        llm = FakeLLM(verdict(action="keep_both", reason="distinct", confidence=0.9))
        resolution = await ConflictResolver(llm).resolve(
            make_candidate("We open at 9"), group_of("We open at 9", similarity=0.9)
        )
        assert resolution.action is ResolutionAction.KEEP_BOTH
        assert len(llm.prompts) == 1

    async def test_reordered_words_are_not_a_duplicate(self):
        llm = FakeLLM(verdict(action="replace", reason="days swapped", confidence=0.9))
        resolution = await ConflictResolver(llm).resolve(
            make_candidate("Closed Monday, open Sunday"), group_of("Open Monday, closed Sunday")
        )
        assert resolution.action is ResolutionAction.REPLACE
        assert resolution.source == "classifier"
        assert len(llm.prompts) == 1

    async def test_changed_number_in_long_text_is_not_a_duplicate(self):
        template = (
            "Acme Bakery is a family owned bakery located on Main Street serving fresh "
            "bread, pastries, cakes and coffee every day of the week, and customers can "
            "reach the front desk by phone at {phone} for orders and catering questions"
        )
        llm = FakeLLM(verdict(action="replace", reason="phone differs", confidence=0.9))
        resolution = await ConflictResolver(llm).resolve(
            make_candidate(template.format(phone="555 9876")),
            group_of(template.format(phone="555 1234")),
        )
        assert resolution.action is ResolutionAction.REPLACE
        assert resolution.reason == "phone differs"

    async def test_update_marker_replaces_without_llm(self):
        llm = FakeLLM()
        resolution = await ConflictResolver(llm).resolve(
            make_candidate("Updated hours: Mon-Fri 8-6"), group_of("Business hours: Mon-Fri 9-5")
        )
        assert resolution.action is ResolutionAction.REPLACE
        assert resolution.source == "markers"
        assert llm.prompts == []

    async def test_marker_in_reason_counts(self):
        resolution = await ConflictResolver().resolve(
            make_candidate("Hours: Mon-Fri 8-6", reason="hours changed"),
            group_of("Business hours: Mon-Fri 9-5"),
        )
        assert resolution.action is ResolutionAction.REPLACE


@pytest.mark.asyncio
class TestClassifier:
    async def test_merge_verdict_carries_text(self):
        llm = FakeLLM(
            verdict(
                action="merge",
                merged_text="Open Mon-Fri 9-5 and Sat 10-2",
                reason="complementary",
                confidence=0.9,
            )
        )
        resolution = await ConflictResolver(llm).resolve(
            make_candidate("Also open Saturdays 10-2"), group_of("Open Mon-Fri 9-5")
        )
        assert resolution.action is ResolutionAction.MERGE
        assert resolution.merged_text == "Open Mon-Fri 9-5 and Sat 10-2"
        assert resolution.source == "classifier"
        assert "Open Mon-Fri 9-5" in llm.prompts[0]
        assert "Also open Saturdays 10-2" in llm.prompts[0]

    async def test_fenced_json_is_accepted(self):
        llm = FakeLLM("```json\n" + verdict(action="replace", reason="newer", confidence=0.8) + "\n```")
        resolution = await ConflictResolver(llm).resolve(
            make_candidate("Open 8-6"), group_of("Open 9-5")
        )
        assert resolution.action is ResolutionAction.REPLACE

    async def test_low_confidence_keeps_both_for_review(self):
        llm = FakeLLM(verdict(action="replace", reason="maybe", confidence=0.3))
        resolution = await ConflictResolver(llm, ResolverPolicy(confidence_floor=0.6)).resolve(
            make_candidate("Open 8-6"), group_of("Open 9-5")
        )
        assert resolution.action is ResolutionAction.KEEP_BOTH
        assert resolution.needs_review is True
        assert resolution.source == "fallback"

    @pytest.mark.parametrize(
        "raw",
        [
            "I think you should replace it",
            "[]",
            verdict(action="create", reason="x", confidence=0.9),
            verdict(action="merge", reason="x", confidence=0.9),
            verdict(action="replace", reason="x", confidence=1.5),
            verdict(action="replace", reason="x"),
        ],
    )
    async def test_malformed_output_falls_back(self, raw):
        resolution = await ConflictResolver(FakeLLM(raw)).resolve(
            make_candidate("Open 8-6"), group_of("Open 9-5")
        )
        assert resolution.action is ResolutionAction.KEEP_BOTH
        assert resolution.needs_review is True

    async def test_no_classifier_falls_back(self):
        resolution = await ConflictResolver(None).resolve(
            make_candidate("Open 8-6"), group_of("Open 9-5")
        )
        assert resolution.action is ResolutionAction.KEEP_BOTH
        assert resolution.needs_review is True

    async def test_provider_error_propagates(self):
        llm = FakeLLM(RateLimited("quota"))
        with pytest.raises(RateLimited):
            await ConflictResolver(llm).resolve(make_candidate("Open 8-6"), group_of("Open 9-5"))
