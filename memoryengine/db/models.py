"""SQLAlchemy ORM models for the memory engine.

One table, memory_entries, holds every fact for every scope. The embedding
column is declared without a width here; the migration fixes it from
MEMORY_EMBEDDING_DIMENSIONS (see alembic/versions/001_memory_entries.py).
"""

from __future__ import annotations

import datetime
import uuid

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from memoryengine.memory.types import MemoryType


class Base(DeclarativeBase):
    pass


class MemoryEntryRow(Base):
    __tablename__ = "memory_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    scope_id: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    text: Mapped[str] = mapped_column(sa.Text, nullable=False)
    embedding = mapped_column(Vector(), nullable=False)
    type: Mapped[MemoryType] = mapped_column(
        sa.Enum(MemoryType, name="memorytype", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict] = mapped_column(
        "metadata", postgresql.JSONB, nullable=False, default=dict
    )
    confidence: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.8)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    superseded_by: Mapped[uuid.UUID | None] = mapped_column(
        postgresql.UUID(as_uuid=True), nullable=True
    )
    superseded_at: Mapped[datetime.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
