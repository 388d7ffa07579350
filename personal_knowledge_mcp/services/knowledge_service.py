"""
Knowledge service for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

Coordinates SQLite (authoritative) and Qdrant (derived) for knowledge
entries. SQLite is always written first and its errors propagate. Vector
writes follow as a separate best-effort step: a failure there is logged and
reported through the `vectorized` flag, and the SQLite write stands.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import (
    CONTENT_PREVIEW_CHARS,
    CONVERT_BATCH_SIZE,
    DEFAULT_MIN_SCORE,
    EMBED_CONTENT_CHARS,
)
from ..models import KIND_KNOWLEDGE, KnowledgeEntry, SearchResult
from ..storage.qdrant_store import make_payload, point_id
from ..utils import record_error

logger = logging.getLogger("personal-knowledge.knowledge")

UPDATABLE_FIELDS = ("title", "content", "source", "tags")


class KnowledgeService:
    def __init__(self, context):
        self.context = context
        self.db = context.sqlite_store
        self.vectors = context.qdrant_store

    async def _index_entry(self, entry: KnowledgeEntry) -> bool:
        """Replace the vector record for an entry; never raises"""
        try:
            return await self.vectors.upsert(
                KIND_KNOWLEDGE,
                entry.id,
                entry.embedding_text(EMBED_CONTENT_CHARS),
                title=entry.title,
                content_preview=entry.content[:CONTENT_PREVIEW_CHARS],
                tags=entry.tags,
            )
        except Exception as e:
            logger.error(f"Vector indexing failed for entry {entry.id}, kept in database only: {e}")
            record_error(self.context.error_log, "index_entry", e)
            return False

    async def add_knowledge(self, title: str, content: str, source: Optional[str] = None,
                            tags: Optional[List[str]] = None) -> Dict[str, Any]:
        """Store an entry and index it for semantic search"""
        if not title or not title.strip():
            raise ValueError("Title must not be empty")

        entry_id = self.db.save_entry(title, content, source, tags)
        logger.info(f"Stored knowledge entry {entry_id}")

        vectorized = False
        entry = self.db.get_entry(entry_id)
        if entry:
            vectorized = await self._index_entry(entry)

        return {"id": entry_id, "vectorized": vectorized}

    async def update_knowledge(self, entry_id: int, **updates) -> Dict[str, Any]:
        """Merge fields into an entry and re-index the merged row"""
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        if updates.get("title") is not None and not updates["title"].strip():
            raise ValueError("Title must not be empty")

        if not self.db.update_entry(entry_id, updates):
            return {"success": False, "vectorized": False}
        logger.info(f"Updated knowledge entry {entry_id}")

        vectorized = False
        entry = self.db.get_entry(entry_id)
        if entry:
            vectorized = await self._index_entry(entry)

        return {"success": True, "vectorized": vectorized}

    async def delete_knowledge(self, entry_id: int) -> bool:
        """Delete the vector record, then the row; True if the row existed"""
        try:
            await self.vectors.delete(KIND_KNOWLEDGE, entry_id)
        except Exception as e:
            logger.warning(f"Vector delete failed for entry {entry_id}, continuing: {e}")
            record_error(self.context.error_log, "delete_vector", e)

        deleted = self.db.delete_entry(entry_id)
        if deleted:
            logger.info(f"Deleted knowledge entry {entry_id}")
        return deleted

    async def search_knowledge(self, query: str, limit: int = 5,
                               min_score: float = DEFAULT_MIN_SCORE) -> List[SearchResult]:
        """Semantic search; raises VectorIndexNotInitializedError before the first index write"""
        return await self.vectors.query(query, limit=limit, min_score=min_score)

    def search_knowledge_text(self, query: str, limit: int = 10) -> List[KnowledgeEntry]:
        return self.db.search_text(query, limit)

    def get_knowledge(self, entry_id: int) -> Optional[KnowledgeEntry]:
        return self.db.get_entry(entry_id)

    def list_knowledge(self, limit: int = 20, offset: int = 0,
                       tags: Optional[List[str]] = None) -> List[KnowledgeEntry]:
        return self.db.list_entries(limit=limit, offset=offset, tags=tags)

    async def get_knowledge_stats(self) -> Dict[str, Any]:
        """Combined database and vector index statistics"""
        database = self.db.get_stats()
        try:
            vectors = await self.vectors.stats()
        except Exception as e:
            logger.error(f"Vector stats failed: {e}")
            record_error(self.context.error_log, "vector_stats", e)
            vectors = {"total_vectors": None, "tag_counts": {}, "error": str(e)}
        return {
            "database": database,
            "vectors": vectors,
            "recent_errors": len(self.context.error_log),
        }

    async def convert_to_vectors(self, batch_size: int = CONVERT_BATCH_SIZE,
                                 on_progress: Optional[Callable[[int, int], None]] = None) -> Dict[str, int]:
        """Index every entry that has no vector record yet

        Only knowledge entries can be rebuilt this way; session messages are
        embedded when logged and have no bulk path.
        """
        entries = self.db.get_all_entries()
        if not entries:
            return {"converted": 0, "skipped": 0}

        existing = await self.vectors.existing_ids(KIND_KNOWLEDGE, [e.id for e in entries])
        to_convert = [e for e in entries if e.id not in existing]

        converted = 0
        for start in range(0, len(to_convert), batch_size):
            batch = to_convert[start:start + batch_size]
            points = []
            for entry in batch:
                vector = await asyncio.to_thread(
                    self.vectors.embedder.generate_embedding, entry.embedding_text(EMBED_CONTENT_CHARS)
                )
                points.append({
                    "id": point_id(KIND_KNOWLEDGE, entry.id),
                    "vector": vector,
                    "payload": make_payload(
                        KIND_KNOWLEDGE, entry.id, entry.title,
                        entry.content[:CONTENT_PREVIEW_CHARS], entry.tags,
                    ),
                })
            await self.vectors.store_batch(points)
            converted += len(points)
            if on_progress:
                on_progress(min(start + batch_size, len(to_convert)), len(to_convert))

        logger.info(f"Converted {converted} entries to vectors ({len(existing)} already indexed)")
        return {"converted": converted, "skipped": len(existing)}

    async def get_vector_stats(self) -> Dict[str, Any]:
        return await self.vectors.stats()

    async def clear_vectors(self) -> bool:
        return await self.vectors.clear()
