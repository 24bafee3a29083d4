"""
Tests for update extraction from conversation text.

Tests:
- Keyword gate (no LLM call without an update keyword)
- Valid extraction with provenance metadata
- null / malformed / off-schema output -> None
- Provider errors propagate from extract()
- End-to-end process_conversation
"""

import json

import pytest

from memoryengine.errors import ErrorKind, RateLimited, TenantScopeViolation
from memoryengine.extraction.extractor import ExtractionService, matched_keywords
from memoryengine.memory.types import CandidateState, MemoryType

from tests.fakes import FakeLLM, SCOPE


def extracted(**fields) -> str:
    payload = {"text": "Open Mon-Fri 8-6", "type": "knowledge", "reason": "new hours", "confidence": 0.9}
    payload.update(fields)
    return json.dumps(payload)


@pytest.mark.asyncio
class TestExtract:
    async def test_no_keyword_means_no_llm_call(self):
        llm = FakeLLM()
        result = await ExtractionService(llm).extract(SCOPE, "Hi, what time do you open tomorrow?")
        assert result is None
        assert llm.prompts == []

    async def test_extracts_candidate_with_provenance(self):
        llm = FakeLLM(extracted())
        result = await ExtractionService(llm).extract(
            SCOPE, "Heads up: our business hours changed, we now open 8-6."
        )

        assert result.scope_id == SCOPE
        assert result.text == "Open Mon-Fri 8-6"
        assert result.type is MemoryType.KNOWLEDGE
        assert result.confidence == 0.9
        assert result.metadata["source"] == "chat_memory_update"
        assert result.metadata["scope_id"] == SCOPE
        assert "extracted_at" in result.metadata
        assert "business hours changed" in result.metadata["matched_keywords"]
        assert "business hours changed" in llm.prompts[0]

    @pytest.mark.parametrize("raw", ["null", "  null  ", "```\nnull\n```", ""])
    async def test_null_means_no_update(self, raw):
        result = await ExtractionService(FakeLLM(raw)).extract(SCOPE, "We have a new address")
        assert result is None

    @pytest.mark.parametrize(
        "raw",
        [
            "Sure! The new address is 1 Main St.",
            "[1, 2]",
            extracted(text="   "),
            extracted(type="rumour"),
            extracted(confidence=3),
        ],
    )
    async def test_malformed_output_returns_none(self, raw):
        result = await ExtractionService(FakeLLM(raw)).extract(SCOPE, "We have a new address")
        assert result is None

    async def test_no_llm_configured_returns_none(self):
        assert await ExtractionService(None).extract(SCOPE, "We have a new address") is None

    async def test_provider_error_propagates(self):
        with pytest.raises(RateLimited):
            await ExtractionService(FakeLLM(RateLimited("quota"))).extract(
                SCOPE, "We have a new address"
            )

    async def test_scope_is_required(self):
        with pytest.raises(TenantScopeViolation):
            await ExtractionService(FakeLLM()).extract("", "We have a new address")


class TestKeywords:
    def test_matching_is_case_insensitive(self):
        assert matched_keywords("UPDATED PRICING for haircuts") == ["updated pricing"]

    def test_questions_without_keywords_do_not_match(self):
        assert matched_keywords("What are your hours?") == []


@pytest.mark.asyncio
class TestProcessConversation:
    async def test_extracted_update_is_applied(self, make_service, store):
        service = make_service(
            FakeLLM(extracted(text="New address: 12 Baker Street", reason="moved location"))
        )
        result = await service.process_conversation(
            SCOPE, "We have a new address: 12 Baker Street"
        )

        assert result.action == "created"
        entry = await store.get(SCOPE, result.memory_id)
        assert entry.text == "New address: 12 Baker Street"
        assert entry.metadata["source"] == "chat_memory_update"

    async def test_no_update_returns_none(self, make_service):
        service = make_service(FakeLLM())
        assert await service.process_conversation(SCOPE, "Thanks, see you soon!") is None

    async def test_extraction_provider_error_becomes_failed_result(self, make_service):
        service = make_service(FakeLLM(RateLimited("quota", retry_after=2)))

        result = await service.process_conversation(SCOPE, "We have a new address")

        assert result.state is CandidateState.FAILED
        assert result.error is ErrorKind.RATE_LIMITED
