"""FastAPI application for the memory engine.

Entry point:
    uvicorn memoryengine.api.main:app --host 0.0.0.0 --port 8000

The lifespan builds the production wiring (settings -> pgvector store ->
embedding generator -> MemoryService) and disposes the database engine on
shutdown. Tests call create_app(service=...) with their own MemoryService and
skip the lifespan wiring entirely.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from memoryengine.api.errors import install_error_handlers
from memoryengine.api.router import api_router
from memoryengine.config import Settings, get_settings
from memoryengine.service import MemoryService

logger = logging.getLogger(__name__)


def create_app(service: MemoryService | None = None, settings: Settings | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.memory_service = service
            yield
            return

        from memoryengine.db.session import create_session_factory  # noqa: PLC0415
        from memoryengine.store.pgvector import PgVectorStore  # noqa: PLC0415

        cfg = settings or get_settings()
        logging.getLogger("memoryengine").setLevel(cfg.log_level)
        logger.info("Memory engine starting up...")
        engine, session_factory = create_session_factory(cfg)
        store = PgVectorStore(
            session_factory,
            cfg.embedding_dimensions,
            timeout_seconds=cfg.provider_timeout_seconds,
            iterative_scan=cfg.hnsw_iterative_scan or None,
        )
        app.state.memory_service = MemoryService.from_settings(cfg, store)
        logger.info(
            "Embedding provider ready: %s (dims=%d)",
            app.state.memory_service.embedder.provider.model_id,
            app.state.memory_service.embedder.dimensions,
        )
        yield
        logger.info("Memory engine shutting down, disposing database engine...")
        await engine.dispose()

    app = FastAPI(title="Memory Engine", lifespan=lifespan)
    if service is not None:
        app.state.memory_service = service
    app.include_router(api_router)
    install_error_handlers(app)
    return app


app = create_app()
