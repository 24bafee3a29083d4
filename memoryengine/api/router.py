"""Top-level FastAPI APIRouter for the memory engine REST API (v1).

Prefix:  /api/v1
Sub-routers:
- memory_router — /api/v1/scopes/{scope_id}/...
"""

from __future__ import annotations

from fastapi import APIRouter

from memoryengine.api.routes.memory import memory_router

api_router = APIRouter(prefix="/api/v1", tags=["rest-api"])

api_router.include_router(memory_router)
