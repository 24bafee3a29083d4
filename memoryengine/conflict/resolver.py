"""Conflict resolution: decide what to do with a candidate and its conflict group.

Outcome vocabulary:
  create     — no conflict group; store the candidate
  reject     — the candidate restates a current entry; store nothing
  replace    — the candidate supersedes every group member
  merge      — one synthesized entry (merged_text) supersedes every group member
  keep_both  — store the candidate next to the group, superseding nothing

The policy is an ordered pipeline. The lexical stages are pure functions of
(candidate, group, policy) that return a Resolution or None to pass; the LLM
classifier runs only when every lexical stage passed; the single fallback
stage at the end is the only place degraded behaviour is encoded:

  1. no_conflict  — no group                                   -> create (1.0)
  2. duplicate    — member with similarity >= 0.95 and
                    near-identical text, same numbers         -> reject (1.0)
  3. markers      — "updated", "new", "changed", "moved", ...  -> replace
  4. classifier   — LLM JSON {action, merged_text?, reason, confidence}
  5. fallback     — no classifier, SchemaError, or confidence
                    below the floor                            -> keep_both, needs_review

Provider errors raised by the classifier (RateLimited, AuthError,
TransientError) are not caught here: proceeding without a decision could
duplicate knowledge, so the orchestrator reports them as a failed update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal

from pydantic import BaseModel, Field, model_validator

from memoryengine.conflict.lexical import is_near_duplicate, update_markers
from memoryengine.errors import SchemaError
from memoryengine.memory.types import ConflictGroup, Resolution, ResolutionAction, UpdateCandidate
from memoryengine.pipeline.llm import LLMProvider, parse_json_payload

logger = logging.getLogger(__name__)

# Prompt template for conflict classification
_CLASSIFY_PROMPT = """\
You maintain a business knowledge base. A NEW fact arrived that is very similar \
to EXISTING facts. Decide how to reconcile them. Respond with JSON only — no \
explanation outside the JSON:

{{"action": "merge" | "replace" | "keep_both" | "reject", "merged_text": string | null, \
"reason": string, "confidence": number between 0 and 1}}

Rules:
- replace: the new fact makes the existing facts outdated (changed hours, new phone, moved address)
- merge: the facts complement each other; put one combined fact in merged_text
- keep_both: the facts are about different things and should coexist
- reject: the new fact adds nothing beyond the existing facts
- merged_text is required for merge and must be null otherwise

NEW FACT:
{candidate_text}

REASON GIVEN FOR THE NEW FACT:
{candidate_reason}

EXISTING FACTS:
{existing_facts}"""


class ClassifierVerdict(BaseModel):
    """Schema the classifier's JSON must satisfy before it is used."""

    action: Literal["merge", "replace", "keep_both", "reject"]
    merged_text: str | None = None
    reason: str = ""
    confidence: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _merge_needs_text(self) -> "ClassifierVerdict":
        if self.action == "merge" and not (self.merged_text and self.merged_text.strip()):
            raise ValueError("merge requires a non-empty merged_text")
        return self


@dataclass(frozen=True)
class ResolverPolicy:
    duplicate_similarity: float = 0.95
    duplicate_text_similarity: float = 0.95
    confidence_floor: float = 0.6
    marker_confidence: float = 0.85
    minhash_num_perm: int = 128
    temperature: float = 0.1
    max_tokens: int = 300

    @classmethod
    def from_settings(cls, settings) -> "ResolverPolicy":
        return cls(
            duplicate_similarity=settings.duplicate_similarity,
            duplicate_text_similarity=settings.duplicate_text_similarity,
            confidence_floor=settings.classifier_confidence_floor,
            minhash_num_perm=settings.minhash_num_perm,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )


Stage = Callable[[UpdateCandidate, "ConflictGroup | None", ResolverPolicy], "Resolution | None"]


# ---------------------------------------------------------------------------
# Lexical stages
# ---------------------------------------------------------------------------


def no_conflict_stage(candidate, group, policy) -> Resolution | None:
    if group is None or not group.members:
        return Resolution(
            action=ResolutionAction.CREATE,
            confidence=1.0,
            reason="no conflicting memories",
            source="no_conflict",
        )
    return None


def duplicate_stage(candidate, group, policy) -> Resolution | None:
    for member in group.members:
        if group.similarities.get(member.id, 0.0) < policy.duplicate_similarity:
            continue
        if is_near_duplicate(
            member.text,
            candidate.text,
            policy.duplicate_text_similarity,
            policy.minhash_num_perm,
        ):
            return Resolution(
                action=ResolutionAction.REJECT,
                confidence=1.0,
                reason="duplicate",
                source="duplicate",
            )
    return None


def marker_stage(candidate, group, policy) -> Resolution | None:
    markers = update_markers(candidate.text, candidate.reason)
    if not markers:
        return None
    return Resolution(
        action=ResolutionAction.REPLACE,
        confidence=policy.marker_confidence,
        reason=f"update markers present: {', '.join(markers)}",
        source="markers",
    )


LEXICAL_STAGES: tuple[Stage, ...] = (no_conflict_stage, duplicate_stage, marker_stage)


def fallback_stage(reason: str) -> Resolution:
    """The one degraded outcome: keep everything and flag it for manual review."""
    return Resolution(
        action=ResolutionAction.KEEP_BOTH,
        confidence=0.0,
        reason=reason,
        needs_review=True,
        source="fallback",
    )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Runs the resolution pipeline for one candidate and its conflict group.

    Args:
        llm:    Classifier backend, or None to skip straight to the fallback.
        policy: Thresholds and sampling parameters.
        stages: Lexical stages, in order (defaults to LEXICAL_STAGES).
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        policy: ResolverPolicy | None = None,
        stages: tuple[Stage, ...] = LEXICAL_STAGES,
    ) -> None:
        self.llm = llm
        self.policy = policy or ResolverPolicy()
        self.stages = stages

    async def resolve(self, candidate: UpdateCandidate, group: ConflictGroup | None) -> Resolution:
        for stage in self.stages:
            resolution = stage(candidate, group, self.policy)
            if resolution is not None:
                logger.debug(
                    "Resolver: stage %s decided %s", resolution.source, resolution.action.value
                )
                return resolution

        if self.llm is None:
            return fallback_stage("no classifier configured; kept both for manual review")

        try:
            verdict = await self._classify(candidate, group)
        except SchemaError as exc:
            logger.warning("Resolver: classifier output rejected (%s), keeping both", exc)
            return fallback_stage(f"classifier output invalid ({exc}); kept both for manual review")

        if verdict.confidence < self.policy.confidence_floor:
            logger.info(
                "Resolver: classifier confidence %.2f below floor %.2f, keeping both",
                verdict.confidence,
                self.policy.confidence_floor,
            )
            return fallback_stage(
                f"classifier suggested {verdict.action} with low confidence "
                f"({verdict.confidence:.2f}): {verdict.reason}"
            )

        return Resolution(
            action=ResolutionAction(verdict.action),
            confidence=verdict.confidence,
            reason=verdict.reason or f"classifier chose {verdict.action}",
            merged_text=verdict.merged_text if verdict.action == "merge" else None,
            source="classifier",
        )

    async def _classify(self, candidate: UpdateCandidate, group: ConflictGroup) -> ClassifierVerdict:
        existing = "\n".join(
            f"{i + 1}. {member.text}" for i, member in enumerate(group.members)
        )
        prompt = _CLASSIFY_PROMPT.format(
            candidate_text=candidate.text,
            candidate_reason=candidate.reason or "(none given)",
            existing_facts=existing,
        )
        raw = await self.llm.complete(
            prompt,
            temperature=self.policy.temperature,
            max_tokens=self.policy.max_tokens,
        )
        return parse_json_payload(raw, ClassifierVerdict)
