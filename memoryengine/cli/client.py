"""Service wiring for CLI commands.

Typer commands are synchronous; each one opens a MemoryService through
open_service() inside a single asyncio.run() call so the database engine is
created and disposed on the same event loop.

--in-memory swaps the pgvector store for InMemoryVectorStore. Nothing is
persisted in that mode; it exists for trying out provider configuration
without a database.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from memoryengine.config import get_settings
from memoryengine.service import MemoryService
from memoryengine.store.memory import InMemoryVectorStore

T = TypeVar("T")


@asynccontextmanager
async def open_service(in_memory: bool = False) -> AsyncIterator[MemoryService]:
    settings = get_settings()
    if in_memory:
        store = InMemoryVectorStore(settings.embedding_dimensions)
        yield MemoryService.from_settings(settings, store)
        return

    from memoryengine.db.session import create_session_factory  # noqa: PLC0415
    from memoryengine.store.pgvector import PgVectorStore  # noqa: PLC0415

    engine, session_factory = create_session_factory(settings)
    try:
        store = PgVectorStore(
            session_factory,
            settings.embedding_dimensions,
            timeout_seconds=settings.provider_timeout_seconds,
            iterative_scan=settings.hnsw_iterative_scan or None,
        )
        yield MemoryService.from_settings(settings, store)
    finally:
        await engine.dispose()


def run_with_service(
    in_memory: bool, fn: Callable[[MemoryService], Awaitable[T]]
) -> T:
    """Open a service, await ``fn(service)`` and return its result."""

    async def _run() -> T:
        async with open_service(in_memory) as service:
            return await fn(service)

    return asyncio.run(_run())
