"""
Embedding generation for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

import logging
import threading
import time
from typing import List, Dict, Any

from ..utils import record_error

logger = logging.getLogger("personal-knowledge.embeddings")


class EmbeddingGenerator:
    """Lazily loaded sentence-transformers encoder, one per context"""

    def __init__(self, config: Dict[str, Any], error_log: List[Dict[str, Any]]):
        """
        Args:
            config: Configuration dict with 'embedding_model' and 'vector_size' keys
            error_log: Shared error log list
        """
        self.model_name = config["embedding_model"]
        self.dimension = config["vector_size"]
        self.error_log = error_log
        self.encoder = None
        self._init_lock = threading.Lock()

    def _ensure_encoder(self):
        """Load the model on first use; concurrent first calls wait for a single load"""
        if self.encoder is not None:
            return

        with self._init_lock:
            if self.encoder is not None:
                return
            start = time.perf_counter()
            self.encoder = self._init_encoder()
            logger.info(f"[LAZY] Encoder loaded on-demand in {(time.perf_counter() - start)*1000:.2f}ms")

    def _init_encoder(self):
        """Import and load the sentence encoder"""
        logger.info(f"Loading embedding model {self.model_name} (first run may download model files)...")
        try:
            # Heavy import, deferred until the encoder is actually needed
            from sentence_transformers import SentenceTransformer

            encoder = SentenceTransformer(self.model_name, device="cpu")
        except Exception as e:
            logger.error(f"Encoder initialization failed: {e}")
            record_error(self.error_log, "encoder_init", e)
            raise

        actual_size = encoder.get_sentence_embedding_dimension()
        if actual_size != self.dimension:
            raise ValueError(
                f"Model {self.model_name} produces {actual_size}-dim vectors, expected {self.dimension}"
            )
        logger.info(f"Encoder initialized with dimension {actual_size}")
        return encoder

    def generate_embedding(self, text: str) -> List[float]:
        self._ensure_encoder()
        return self.encoder.encode(text, normalize_embeddings=True).tolist()

    def is_loaded(self) -> bool:
        return self.encoder is not None
