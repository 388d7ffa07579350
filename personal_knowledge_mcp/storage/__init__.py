"""
Storage backends for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

from .embeddings import EmbeddingGenerator
from .qdrant_store import QdrantStore, point_id
from .sqlite_store import SQLiteStore

__all__ = ['EmbeddingGenerator', 'QdrantStore', 'SQLiteStore', 'point_id']
