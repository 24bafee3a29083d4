"""Async database engine and session factory construction.

Usage:
    from memoryengine.db.session import create_session_factory

    engine, session_factory = create_session_factory(settings)
    async with session_factory() as session:
        result = await session.execute(select(MemoryEntryRow))

IMPORTANT: Each operation must get its own session from the factory.
AsyncSession is NOT safe to share across concurrent coroutines or requests.
The engine is owned by whoever called create_session_factory() and must be
disposed by them (the API lifespan, or the CLI command).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine


def create_session_factory(settings) -> tuple[AsyncEngine, async_sessionmaker]:
    engine = create_async_engine(
        settings.database_url,
        echo=False,
        pool_size=10,
        max_overflow=20,
    )
    # expire_on_commit=False keeps ORM objects accessible after commit
    return engine, async_sessionmaker(engine, expire_on_commit=False)
