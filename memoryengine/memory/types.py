"""Domain types shared by every layer of the memory engine.

MemoryEntry      — one stored fact (text + vector) inside a scope
SearchMatch      — a MemoryEntry paired with its similarity to a query vector
ConflictGroup    — entries plausibly describing the same fact
Resolution       — the decision applied to a conflict group
UpdateCandidate  — input to the update orchestrator
UpdateResult     — terminal outcome of one update, including failures
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any

from memoryengine.errors import ErrorKind


class MemoryType(str, enum.Enum):
    CONVERSATION = "conversation"
    FAQ = "faq"
    KNOWLEDGE = "knowledge"
    EXAMPLE = "example"
    DOCUMENT = "document"


class ResolutionAction(str, enum.Enum):
    CREATE = "create"
    MERGE = "merge"
    REPLACE = "replace"
    KEEP_BOTH = "keep_both"
    REJECT = "reject"


class UpdateMode(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class CandidateState(str, enum.Enum):
    """Lifecycle of one update candidate.

    EXTRACTED -> EMBEDDED -> CONFLICT_CHECKED -> RESOLVED -> PERSISTED | REJECTED | FAILED
    """

    EXTRACTED = "extracted"
    EMBEDDED = "embedded"
    CONFLICT_CHECKED = "conflict_checked"
    RESOLVED = "resolved"
    PERSISTED = "persisted"
    REJECTED = "rejected"
    FAILED = "failed"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class MemoryEntry:
    scope_id: str
    text: str
    vector: list[float]
    type: MemoryType = MemoryType.KNOWLEDGE
    metadata: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.8
    id: str | None = None
    created_at: datetime.datetime | None = None
    superseded_by: str | None = None
    superseded_at: datetime.datetime | None = None

    @property
    def is_current(self) -> bool:
        return self.superseded_by is None

    def to_dict(self, include_vector: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "scope_id": self.scope_id,
            "text": self.text,
            "type": self.type.value,
            "metadata": self.metadata,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "superseded_by": self.superseded_by,
        }
        if include_vector:
            data["vector"] = list(self.vector)
        return data


@dataclass
class SearchMatch:
    entry: MemoryEntry
    similarity: float

    @property
    def distance(self) -> float:
        """Cosine distance, the complement of similarity."""
        return 1.0 - self.similarity


@dataclass
class ConflictGroup:
    topic: str
    members: list[MemoryEntry]
    pairwise_similarity: float
    # member id -> similarity to the anchor (the candidate, or the scanned entry)
    similarities: dict[str, float] = field(default_factory=dict)

    @property
    def member_ids(self) -> list[str]:
        return [m.id for m in self.members if m.id is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "pairwise_similarity": self.pairwise_similarity,
            "members": [
                {**m.to_dict(), "similarity": self.similarities.get(m.id)}
                for m in self.members
            ],
        }


@dataclass
class Resolution:
    action: ResolutionAction
    confidence: float
    reason: str
    merged_text: str | None = None
    needs_review: bool = False
    source: str = ""  # policy stage that produced this resolution

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "merged_text": self.merged_text,
            "needs_review": self.needs_review,
            "source": self.source,
        }


@dataclass
class UpdateCandidate:
    scope_id: str
    text: str
    type: MemoryType = MemoryType.KNOWLEDGE
    metadata: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.8
    reason: str = ""


@dataclass
class UpdateResult:
    scope_id: str
    action: str
    state: CandidateState
    memory_id: str | None = None
    conflicts: list[ConflictGroup] = field(default_factory=list)
    resolution: Resolution | None = None
    error: ErrorKind | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        if self.state in (CandidateState.PERSISTED, CandidateState.REJECTED):
            return True
        return self.action == "conflicts_detected"

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope_id": self.scope_id,
            "success": self.success,
            "action": self.action,
            "state": self.state.value,
            "memory_id": self.memory_id,
            "conflicts": [g.to_dict() for g in self.conflicts],
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "error": self.error.value if self.error else None,
            "error_message": self.error_message,
        }


@dataclass
class KnowledgeSummary:
    scope_id: str
    counts: dict[str, int]
    total_current: int
    superseded: int
    recent: list[str] = field(default_factory=list)

    def count(self, memory_type: MemoryType) -> int:
        return self.counts.get(memory_type.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope_id": self.scope_id,
            "counts": dict(self.counts),
            "total_current": self.total_current,
            "superseded": self.superseded,
            "recent": list(self.recent),
        }
