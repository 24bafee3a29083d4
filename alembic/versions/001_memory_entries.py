"""memory_entries table, pgvector extension, indexes.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates:
- memorytype     : PostgreSQL enum matching the MemoryType Python enum
- memory_entries : every fact of every scope, current and superseded

Indexes:
- ix_memory_entries_scope_id        : scope filtering
- ix_memory_entries_current         : partial index on (scope_id) WHERE superseded_by IS NULL
- ix_memory_entries_embedding_hnsw  : HNSW approximate nearest neighbour (cosine)

Scope-filtered queries against the HNSW index rely on hnsw.iterative_scan,
which needs pgvector 0.8.0 or newer (see PgVectorStore.query).

The vector width comes from MEMORY_EMBEDDING_DIMENSIONS at migration time
(384 for all-MiniLM-L6-v2, 1536 for text-embedding-ada-002). Changing the
embedding model to one of a different width requires a new migration and a
re-embed of existing rows.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from memoryengine.config import get_settings

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    dimensions = get_settings().embedding_dimensions

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    memorytype_enum = postgresql.ENUM(
        "conversation",
        "faq",
        "knowledge",
        "example",
        "document",
        name="memorytype",
    )
    memorytype_enum.create(op.get_bind())

    op.create_table(
        "memory_entries",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("scope_id", sa.String(255), nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("type", postgresql.ENUM(name="memorytype", create_type=False), nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0.8"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("superseded_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
    )

    # VECTOR(n) DDL needs the extension loaded, which happened above
    op.execute(f"ALTER TABLE memory_entries ADD COLUMN embedding vector({int(dimensions)}) NOT NULL")

    op.create_index("ix_memory_entries_scope_id", "memory_entries", ["scope_id"])
    op.create_index(
        "ix_memory_entries_current",
        "memory_entries",
        ["scope_id"],
        postgresql_where=sa.text("superseded_by IS NULL"),
    )

    # m=16, ef_construction=64: pgvector defaults
    op.execute(
        """
        CREATE INDEX ix_memory_entries_embedding_hnsw
        ON memory_entries
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
        """
    )


def downgrade() -> None:
    op.drop_index("ix_memory_entries_embedding_hnsw", table_name="memory_entries")
    op.drop_index("ix_memory_entries_current", table_name="memory_entries")
    op.drop_index("ix_memory_entries_scope_id", table_name="memory_entries")
    op.drop_table("memory_entries")
    op.execute("DROP TYPE IF EXISTS memorytype")
