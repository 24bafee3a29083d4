"""Vector store adapters (pgvector and in-memory) behind the VectorStore contract."""
