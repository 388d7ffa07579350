"""
Qdrant vector store for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

The vector index is a derived cache of SQLite rows. Records carry a
denormalised preview (title, content head, tags) so search results can be
shown without a join back to SQLite, and may be stale.
"""

import asyncio
import logging
import threading
import time
import uuid
from typing import List, Dict, Any, Iterable, Optional, Set

from ..config import DEFAULT_MIN_SCORE
from ..errors import VectorIndexNotInitializedError
from ..models import SearchResult
from ..utils import record_error

logger = logging.getLogger("personal-knowledge.qdrant")

POINT_NAMESPACE = uuid.UUID("8c6f3b0e-5d1a-4f7e-9a43-2b1f0c9d7e11")

SCROLL_PAGE_SIZE = 256


def point_id(kind: str, source_id: int) -> str:
    """Stable point id for a source row; kinds keep entry and message ids apart"""
    return str(uuid.uuid5(POINT_NAMESPACE, f"{kind}:{source_id}"))


def make_payload(kind: str, source_id: int, title: str, content_preview: str,
                 tags: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "kind": kind,
        "source_id": source_id,
        "title": title,
        "content_preview": content_preview,
        "tags": list(tags or []),
    }


class QdrantStore:
    """Handles embedded Qdrant vector database operations"""

    def __init__(self, config: Dict[str, Any], embedder, error_log: List[Dict[str, Any]]):
        """
        Args:
            config: Configuration dict with vector_path, collection_name, qdrant_max_retries
            embedder: Object exposing generate_embedding(text) and dimension
            error_log: Shared error log list
        """
        self.config = config
        self.collection_name = config["collection_name"]
        self.embedder = embedder
        self.error_log = error_log
        self.client = None
        self._init_lock = threading.Lock()

    def _ensure_client(self):
        """Open the embedded client on first use"""
        if self.client is not None:
            return

        with self._init_lock:
            if self.client is not None:
                return

            # Import only when actually needed (lazy loading)
            from qdrant_client import QdrantClient

            start = time.perf_counter()
            vector_path = self.config["vector_path"]
            vector_path.mkdir(parents=True, exist_ok=True)
            try:
                self.client = QdrantClient(path=str(vector_path))
            except Exception as e:
                logger.error(f"Qdrant embedded initialization failed: {e}")
                record_error(self.error_log, "qdrant_init", e)
                raise
            logger.info(
                f"[LAZY] Qdrant embedded mode initialized at {vector_path} "
                f"in {(time.perf_counter() - start)*1000:.2f}ms"
            )

    def _collection_exists(self) -> bool:
        self._ensure_client()
        collections = self.client.get_collections().collections
        return any(col.name == self.collection_name for col in collections)

    def _ensure_collection(self):
        """Create the collection on first write"""
        if self._collection_exists():
            return

        from qdrant_client.models import Distance, VectorParams

        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.embedder.dimension, distance=Distance.COSINE),
        )
        logger.info(f"Created Qdrant collection: {self.collection_name}")

    def _require_collection(self):
        if not self._collection_exists():
            raise VectorIndexNotInitializedError()

    async def upsert(self, kind: str, source_id: int, text: str, title: str,
                     content_preview: str, tags: Optional[List[str]] = None) -> bool:
        """Embed text and replace the record for (kind, source_id)

        Embedding errors propagate; store errors are retried and reported as False.
        """
        vector = await asyncio.to_thread(self.embedder.generate_embedding, text)
        payload = make_payload(kind, source_id, title, content_preview, tags)
        return await self.store_point(point_id(kind, source_id), vector, payload)

    async def store_point(self, pid: str, vector: List[float], payload: Dict[str, Any],
                          max_retries: int = None) -> bool:
        """Store a single point with retry logic"""
        await asyncio.to_thread(self._ensure_collection)

        from qdrant_client.models import PointStruct

        if max_retries is None:
            max_retries = self.config.get("qdrant_max_retries", 3)

        for attempt in range(max_retries):
            try:
                # Upsert replaces the whole point: vector and payload
                await asyncio.to_thread(
                    self.client.upsert,
                    collection_name=self.collection_name,
                    points=[PointStruct(id=pid, vector=vector, payload=payload)],
                )
                logger.debug(f"Stored point {pid} in Qdrant")
                return True
            except Exception as e:
                if attempt == max_retries - 1:
                    logger.error(f"Qdrant store failed after {max_retries} attempts for {pid}: {e}")
                    record_error(self.error_log, "qdrant_store_retry", e)
                    return False
                logger.warning(f"Qdrant store attempt {attempt + 1} failed, retrying...")
                await asyncio.sleep(2 ** attempt)
        return False

    async def store_batch(self, points: List[Dict[str, Any]]) -> bool:
        """Store multiple points in a batch

        Args:
            points: List of dicts with 'id', 'vector', 'payload' keys
        """
        if not points:
            return False

        await asyncio.to_thread(self._ensure_collection)

        from qdrant_client.models import PointStruct

        qdrant_points = [
            PointStruct(id=p["id"], vector=p["vector"], payload=p["payload"])
            for p in points
        ]
        try:
            await asyncio.to_thread(
                self.client.upsert,
                collection_name=self.collection_name,
                points=qdrant_points,
            )
        except Exception as e:
            logger.error(f"Qdrant batch store failed: {e}")
            record_error(self.error_log, "qdrant_batch_store", e)
            raise
        logger.debug(f"Stored {len(points)} points in Qdrant batch")
        return True

    async def delete(self, kind: str, source_id: int) -> bool:
        """Delete the record for (kind, source_id); False when no collection exists"""
        if not await asyncio.to_thread(self._collection_exists):
            return False

        await asyncio.to_thread(
            self.client.delete,
            collection_name=self.collection_name,
            points_selector=[point_id(kind, source_id)],
        )
        logger.debug(f"Deleted {kind} {source_id} from Qdrant")
        return True

    async def search(self, query_vector: List[float], limit: int) -> List[Dict[str, Any]]:
        """Nearest neighbours for a vector, best first

        Returns:
            List of dicts with 'id', 'payload' and 'score' keys
        """
        await asyncio.to_thread(self._require_collection)

        try:
            results = await asyncio.to_thread(
                self.client.query_points,
                collection_name=self.collection_name,
                query=query_vector,
                limit=limit,
                with_payload=True,
            )
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            record_error(self.error_log, "vector_search", e)
            raise

        # Cosine collections report similarity, i.e. 1 - cosine distance
        return [
            {"id": point.id, "payload": point.payload, "score": point.score}
            for point in results.points
        ]

    async def query(self, text: str, limit: int = 5,
                    min_score: float = DEFAULT_MIN_SCORE) -> List[SearchResult]:
        """Embed text, search, and project hits scoring at least min_score"""
        await asyncio.to_thread(self._require_collection)

        query_vector = await asyncio.to_thread(self.embedder.generate_embedding, text)
        raw = await self.search(query_vector, limit)
        results = [SearchResult.from_payload(hit["payload"], hit["score"]) for hit in raw]
        return [r for r in results if r.score >= min_score]

    async def existing_ids(self, kind: str, source_ids: Iterable[int]) -> Set[int]:
        """Source ids of the given kind that already have a record"""
        source_ids = list(source_ids)
        if not source_ids or not await asyncio.to_thread(self._collection_exists):
            return set()

        points = await asyncio.to_thread(
            self.client.retrieve,
            collection_name=self.collection_name,
            ids=[point_id(kind, sid) for sid in source_ids],
            with_payload=True,
            with_vectors=False,
        )
        return {p.payload["source_id"] for p in points if p.payload.get("kind") == kind}

    async def stats(self) -> Dict[str, Any]:
        """Total records and tag counts across the index"""
        return await asyncio.to_thread(self._stats)

    def _stats(self) -> Dict[str, Any]:
        if not self._collection_exists():
            return {"total_vectors": 0, "tag_counts": {}}

        total = 0
        tag_counts: Dict[str, int] = {}
        offset = None
        while True:
            points, offset = self.client.scroll(
                collection_name=self.collection_name,
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=["tags"],
                with_vectors=False,
            )
            for point in points:
                total += 1
                for tag in (point.payload or {}).get("tags") or []:
                    tag_counts[tag] = tag_counts.get(tag, 0) + 1
            if offset is None:
                break

        return {"total_vectors": total, "tag_counts": tag_counts}

    async def clear(self) -> bool:
        """Drop the collection; False when there was nothing to drop"""
        if not await asyncio.to_thread(self._collection_exists):
            return False
        await asyncio.to_thread(self.client.delete_collection, collection_name=self.collection_name)
        logger.info(f"Dropped Qdrant collection: {self.collection_name}")
        return True

    def close(self):
        if self.client is not None:
            try:
                self.client.close()
                logger.info("Qdrant client closed")
            except Exception as e:
                logger.error(f"Error closing Qdrant: {e}")
            finally:
                self.client = None
