"""Vector store contract for the memory engine.

Every method takes scope_id as a mandatory first argument. require_scope()
runs before any I/O and raises TenantScopeViolation for a missing, blank or
non-string scope; implementations also verify that every row they return
belongs to the requested scope. A violation is never corrected silently.

Similarity is cosine similarity in [0, 1] for normalized vectors; a query
returns current (non-superseded) entries with similarity >= threshold, ranked
by similarity descending, at most top_k of them.

store_call() is the store-side counterpart of pipeline.http.provider_call():
it bounds a block of store I/O by a timeout and turns timeouts, refused
connections and dropped database connections into TransientError, and any
other DBAPI failure into ProviderError.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeout

from memoryengine.errors import DimensionMismatch, ProviderError, TenantScopeViolation, TransientError
from memoryengine.memory.types import MemoryEntry, SearchMatch

logger = logging.getLogger(__name__)


def require_scope(scope_id) -> str:
    """Return *scope_id* if it is a usable scope, else raise TenantScopeViolation."""
    if not isinstance(scope_id, str) or not scope_id.strip():
        raise TenantScopeViolation(f"a non-empty scope_id is required, got {scope_id!r}")
    return scope_id


def check_rows_in_scope(scope_id: str, entries: Iterable[MemoryEntry]) -> None:
    for entry in entries:
        if entry.scope_id != scope_id:
            raise TenantScopeViolation(
                f"entry {entry.id} belongs to scope {entry.scope_id!r}, not {scope_id!r}"
            )


@asynccontextmanager
async def store_call(operation: str, timeout_seconds: float | None) -> AsyncIterator[None]:
    """Bound the block by *timeout_seconds* and map database failures to provider errors.

    A timeout of None leaves the block unbounded.
    """
    try:
        async with asyncio.timeout(timeout_seconds):
            yield
    except TimeoutError as exc:
        logger.warning("store: %s timed out after %ss", operation, timeout_seconds)
        raise TransientError(f"store: {operation} timed out after {timeout_seconds}s") from exc
    except (OperationalError, InterfaceError, PoolTimeout, OSError) as exc:
        logger.warning("store: %s failed: %s", operation, exc)
        raise TransientError(f"store: {operation} failed: {exc}") from exc
    except DBAPIError as exc:
        logger.error("store: %s failed: %s", operation, exc)
        raise ProviderError(f"store: {operation} failed: {exc}") from exc


class VectorStore(ABC):
    """Tenant-scoped storage of (text, vector, type, metadata) records."""

    def __init__(self, dimensions: int) -> None:
        self.dimensions = dimensions

    def check_vector(self, vector) -> None:
        if len(vector) != self.dimensions:
            raise DimensionMismatch(
                f"vector has {len(vector)} dimensions, store expects {self.dimensions}"
            )

    @abstractmethod
    async def insert(self, scope_id: str, entries: list[MemoryEntry]) -> list[str]:
        """Persist *entries* under *scope_id* and return their new ids, in order."""
        ...

    @abstractmethod
    async def query(
        self,
        scope_id: str,
        vector: list[float],
        threshold: float,
        top_k: int,
    ) -> list[SearchMatch]:
        ...

    @abstractmethod
    async def delete(self, scope_id: str, ids: list[str]) -> int:
        """Physically delete entries by id within the scope. Returns the count removed."""
        ...

    @abstractmethod
    async def delete_scope(self, scope_id: str) -> int:
        ...

    @abstractmethod
    async def supersede(
        self,
        scope_id: str,
        entry: MemoryEntry,
        superseded_ids: list[str],
    ) -> str:
        """Insert *entry* and mark *superseded_ids* as superseded by it, atomically.

        Either both happen or neither does. Every id must be a current entry of
        the scope; otherwise TenantScopeViolation (foreign id) or ValueError
        (unknown or already superseded id) is raised and nothing is written.
        """
        ...

    @abstractmethod
    async def list_entries(
        self, scope_id: str, include_superseded: bool = False
    ) -> list[MemoryEntry]:
        """All entries of the scope, newest first."""
        ...

    @abstractmethod
    async def get(self, scope_id: str, entry_id: str) -> MemoryEntry | None:
        ...

    @abstractmethod
    async def count_by_type(
        self, scope_id: str, include_superseded: bool = False
    ) -> dict[str, int]:
        ...
