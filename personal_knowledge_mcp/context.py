"""
Resource context for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

KnowledgeContext owns the process-wide resources: the SQLite connection,
the embedded Qdrant client and the embedding model. SQLite opens eagerly;
Qdrant and the encoder load on first use. Everything is released by
shutdown().
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_config
from .storage import EmbeddingGenerator, QdrantStore, SQLiteStore
from .storage.sqlite_store import connect
from .utils import register_sqlite_adapters

logger = logging.getLogger("personal-knowledge.context")


class KnowledgeContext:
    def __init__(self, config: Optional[Dict[str, Any]] = None, data_dir: Optional[Path] = None,
                 embedder=None):
        """
        Args:
            config: Configuration dict from load_config(); built from the environment if omitted
            data_dir: Base data directory overriding OPENCODE_PK_DATA_DIR
            embedder: Replacement for the sentence-transformers encoder, exposing
                generate_embedding(text) and dimension
        """
        self.config = config or load_config(data_dir=data_dir)
        self.error_log: List[Dict[str, Any]] = []
        self._db_lock = threading.RLock()

        self.embedder = embedder or EmbeddingGenerator(self.config, self.error_log)
        self.sqlite_store: Optional[SQLiteStore] = None
        self.qdrant_store: Optional[QdrantStore] = None

    def initialize(self) -> "KnowledgeContext":
        """Create the data directory and open SQLite"""
        start = time.perf_counter()
        register_sqlite_adapters()

        data_dir: Path = self.config["data_dir"]
        data_dir.mkdir(parents=True, exist_ok=True)

        db_path = self.config["db_path"]
        self.sqlite_store = SQLiteStore(db_path, connect(db_path), self._db_lock, self.error_log)
        self.sqlite_store.initialize()
        self.qdrant_store = QdrantStore(self.config, self.embedder, self.error_log)

        logger.info(f"[TIMING] KnowledgeContext initialized in {(time.perf_counter() - start)*1000:.2f}ms")
        return self

    def shutdown(self):
        """Release the stores"""
        logger.info("Shutting down KnowledgeContext...")
        if self.qdrant_store:
            self.qdrant_store.close()
        if self.sqlite_store:
            self.sqlite_store.close()
        logger.info("KnowledgeContext shutdown complete")

    def __enter__(self) -> "KnowledgeContext":
        return self.initialize()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
