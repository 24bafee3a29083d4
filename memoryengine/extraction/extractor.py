"""Extraction of memory update candidates from conversation text.

A keyword gate runs first so that ordinary messages never cost an LLM call:
only conversations mentioning one of UPDATE_KEYWORDS ("new address", "updated
pricing", ...) reach the model. The model is asked for one JSON object
{text, type, reason, confidence}, or the literal null when nothing was
updated. Unparseable or off-schema output yields None rather than an error,
so a bad extraction never aborts the enclosing conversation flow.

Provider errors (RateLimited, AuthError, TransientError) still raise; the
MemoryService turns them into a failed UpdateResult.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from memoryengine.errors import SchemaError
from memoryengine.memory.types import MemoryType, UpdateCandidate, utcnow
from memoryengine.pipeline.llm import LLMProvider, parse_json_payload, strip_fences
from memoryengine.store.base import require_scope

logger = logging.getLogger(__name__)

UPDATE_KEYWORDS: tuple[str, ...] = (
    "business hours changed",
    "hours changed",
    "updated hours",
    "new hours",
    "moved location",
    "new address",
    "relocated",
    "changed phone",
    "new phone",
    "updated contact",
    "price change",
    "updated pricing",
    "new rates",
    "service change",
    "new service",
    "updated service",
    "policy change",
    "updated policy",
    "new policy",
)

_EXTRACTION_PROMPT = """\
Analyze this conversation and determine if it contains a business information \
update that should be stored in the assistant's memory.

CONVERSATION: "{conversation}"

Consider updates to: business hours, location or address, contact information, \
pricing, services, policies, business name, staff, or anything else customers \
should know.

Only extract information that is clearly stated as a change, specific, and \
relevant to customers. Questions ("What are your hours?") and plans that are \
not confirmed ("I'm thinking of changing our hours") are NOT updates.

If you find a clear update, respond with ONLY valid JSON (no markdown):
{{"text": "the updated information, clear and concise", "type": "knowledge", \
"reason": "what was updated", "confidence": 0.0-1.0}}

If there is no clear update, respond with: null"""


class ExtractedUpdate(BaseModel):
    text: str = Field(min_length=1)
    type: MemoryType = MemoryType.KNOWLEDGE
    reason: str = ""
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value.strip()


def matched_keywords(conversation_text: str) -> list[str]:
    lowered = conversation_text.lower()
    return [k for k in UPDATE_KEYWORDS if k in lowered]


class ExtractionService:
    def __init__(
        self,
        llm: LLMProvider | None,
        temperature: float = 0.1,
        max_tokens: int = 300,
        source: str = "chat_memory_update",
    ) -> None:
        self.llm = llm
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.source = source

    async def extract(self, scope_id: str, conversation_text: str) -> UpdateCandidate | None:
        require_scope(scope_id)
        keywords = matched_keywords(conversation_text)
        if not keywords:
            return None
        if self.llm is None:
            logger.info("Extraction: update keywords found but no LLM configured, skipping")
            return None

        logger.info("Extraction: scope=%s matched %s", scope_id, ", ".join(keywords))
        raw = await self.llm.complete(
            _EXTRACTION_PROMPT.format(conversation=conversation_text),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if strip_fences(raw) in ("", "null"):
            return None
        try:
            extracted = parse_json_payload(raw, ExtractedUpdate)
        except SchemaError as exc:
            logger.warning("Extraction: discarding malformed output (%s). Raw: %.200s", exc, raw)
            return None

        return UpdateCandidate(
            scope_id=scope_id,
            text=extracted.text,
            type=extracted.type,
            confidence=extracted.confidence,
            reason=extracted.reason,
            metadata={
                "source": self.source,
                "extracted_at": utcnow().isoformat(),
                "scope_id": scope_id,
                "reason": extracted.reason,
                "matched_keywords": keywords,
            },
        )
