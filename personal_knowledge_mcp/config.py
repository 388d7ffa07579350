"""
Configuration for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

DATA_DIR_ENV = "OPENCODE_PK_DATA_DIR"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "opencode-personal-knowledge"

DB_FILENAME = "knowledge.db"
VECTOR_DIRNAME = "vectors"
COLLECTION_NAME = "knowledge_vectors"

# Model identifier -> embedding width
EMBEDDING_MODELS = {
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
}
DEFAULT_EMBEDDING_MODEL = "BAAI/bge-small-en-v1.5"

DEFAULT_MIN_SCORE = 0.3
SESSION_TIMEOUT = timedelta(hours=1)
CONTENT_PREVIEW_CHARS = 500
EMBED_CONTENT_CHARS = 1000
CONVERT_BATCH_SIZE = 50

NEW_SESSION_SUMMARY = "Auto-closed when new session started"
TIMEOUT_SUMMARY = "Auto-closed due to inactivity"


def load_config(data_dir: Optional[Path] = None, embedding_model: str = DEFAULT_EMBEDDING_MODEL) -> Dict[str, Any]:
    """Build the runtime configuration dict from the environment"""
    if data_dir is None:
        data_dir = Path(os.getenv(DATA_DIR_ENV) or DEFAULT_DATA_DIR)
    data_dir = Path(data_dir).expanduser()

    if embedding_model not in EMBEDDING_MODELS:
        raise ValueError(f"Unknown embedding model: {embedding_model}")

    return {
        "data_dir": data_dir,
        "db_path": data_dir / DB_FILENAME,
        "vector_path": data_dir / VECTOR_DIRNAME,
        "collection_name": COLLECTION_NAME,
        "embedding_model": embedding_model,
        "vector_size": EMBEDDING_MODELS[embedding_model],
        "qdrant_max_retries": int(os.getenv("PK_QDRANT_MAX_RETRIES", 3)),
        "log_level": os.getenv("PK_LOG_LEVEL", "INFO"),
    }
