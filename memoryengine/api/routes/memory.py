"""Memory REST endpoints, all scoped by the {scope_id} path parameter.

Endpoints:
- POST   /scopes/{scope_id}/segments          — bulk store without conflict checks
- GET    /scopes/{scope_id}/search            — semantic search over current entries
- POST   /scopes/{scope_id}/memory            — conflict-aware update (auto | manual)
- POST   /scopes/{scope_id}/memory/resolve    — apply a caller-chosen resolution
- DELETE /scopes/{scope_id}/memory/{memory_id}
- POST   /scopes/{scope_id}/extract           — extract an update from conversation text and apply it
- GET    /scopes/{scope_id}/conflicts         — conflict analysis of the whole scope
- GET    /scopes/{scope_id}/summary           — counts by type
- DELETE /scopes/{scope_id}                   — scope teardown

The REST layer is a thin HTTP adapter: every handler delegates to MemoryService.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from memoryengine.memory.types import (
    MemoryType,
    Resolution,
    ResolutionAction,
    UpdateCandidate,
    UpdateMode,
)
from memoryengine.service import MemoryService, Segment

logger = logging.getLogger(__name__)

memory_router = APIRouter(prefix="/scopes/{scope_id}", tags=["memory"])


def get_service(request: Request) -> MemoryService:
    return request.app.state.memory_service


ServiceDep = Annotated[MemoryService, Depends(get_service)]


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class SegmentIn(BaseModel):
    text: str = Field(min_length=1)
    type: MemoryType = MemoryType.CONVERSATION
    metadata: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class SegmentsRequest(BaseModel):
    segments: list[SegmentIn]


class CandidateIn(BaseModel):
    text: str = Field(min_length=1)
    type: MemoryType = MemoryType.KNOWLEDGE
    metadata: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    reason: str = ""

    def to_candidate(self, scope_id: str) -> UpdateCandidate:
        return UpdateCandidate(
            scope_id=scope_id,
            text=self.text,
            type=self.type,
            metadata=dict(self.metadata),
            confidence=self.confidence,
            reason=self.reason,
        )


class UpdateRequest(BaseModel):
    candidate: CandidateIn
    mode: UpdateMode = UpdateMode.AUTO


class ResolutionIn(BaseModel):
    action: ResolutionAction
    merged_text: str | None = None
    reason: str = "manual decision"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ResolveRequest(BaseModel):
    candidate: CandidateIn
    resolution: ResolutionIn


class ExtractRequest(BaseModel):
    conversation: str = Field(min_length=1)
    mode: UpdateMode = UpdateMode.AUTO


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@memory_router.post("/segments", status_code=201, operation_id="store_segments")
async def store_segments(scope_id: str, body: SegmentsRequest, service: ServiceDep) -> dict:
    entries = await service.store_conversation_embeddings(
        scope_id,
        [
            Segment(text=s.text, type=s.type, metadata=s.metadata, confidence=s.confidence)
            for s in body.segments
        ],
    )
    return {"ids": [e.id for e in entries]}


@memory_router.get("/search", operation_id="search_memory")
async def search_memory(
    scope_id: str,
    service: ServiceDep,
    query: Annotated[str, Query(min_length=1, description="Search query text")],
    threshold: Annotated[float | None, Query(ge=0.0, le=1.0)] = None,
    limit: Annotated[int | None, Query(ge=1, le=50)] = None,
) -> dict:
    matches = await service.search_similar_conversations(scope_id, query, threshold, limit)
    return {
        "results": [
            {**m.entry.to_dict(), "similarity": m.similarity} for m in matches
        ],
        "total_found": len(matches),
    }


@memory_router.post("/memory", operation_id="update_memory")
async def update_memory(scope_id: str, body: UpdateRequest, service: ServiceDep) -> dict:
    result = await service.update_memory(scope_id, body.candidate.to_candidate(scope_id), body.mode)
    return result.to_dict()


@memory_router.post("/memory/resolve", operation_id="resolve_memory")
async def resolve_memory(scope_id: str, body: ResolveRequest, service: ServiceDep) -> dict:
    resolution = Resolution(
        action=body.resolution.action,
        confidence=body.resolution.confidence,
        reason=body.resolution.reason,
        merged_text=body.resolution.merged_text,
        source="manual",
    )
    try:
        result = await service.apply_resolution(
            scope_id, body.candidate.to_candidate(scope_id), resolution
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return result.to_dict()


@memory_router.delete("/memory/{memory_id}", operation_id="delete_memory")
async def delete_memory(scope_id: str, memory_id: str, service: ServiceDep) -> dict:
    if not await service.delete_memory(scope_id, memory_id):
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return {"deleted_memory_id": memory_id}


@memory_router.post("/extract", operation_id="extract_memory")
async def extract_memory(scope_id: str, body: ExtractRequest, service: ServiceDep) -> dict:
    result = await service.process_conversation(scope_id, body.conversation, body.mode)
    if result is None:
        return {"extracted": False}
    return {"extracted": True, **result.to_dict()}


@memory_router.get("/conflicts", operation_id="memory_conflicts")
async def memory_conflicts(
    scope_id: str,
    service: ServiceDep,
    threshold: Annotated[float | None, Query(ge=0.0, le=1.0)] = None,
) -> dict:
    groups = await service.get_memory_conflicts(scope_id, threshold)
    return {"total_conflicts": len(groups), "conflicts": [g.to_dict() for g in groups]}


@memory_router.get("/summary", operation_id="knowledge_summary")
async def knowledge_summary(scope_id: str, service: ServiceDep) -> dict:
    return (await service.get_business_knowledge_summary(scope_id)).to_dict()


@memory_router.delete("", operation_id="delete_scope")
async def delete_scope(scope_id: str, service: ServiceDep) -> dict:
    removed = await service.delete_scope(scope_id)
    return {"scope_id": scope_id, "deleted": removed}
