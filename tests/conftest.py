"""
Shared fixtures for Personal Knowledge MCP tests
Copyright 2025 Jurden Bruce

Qdrant runs in embedded mode inside a temporary directory and a
deterministic hashing embedder replaces the sentence-transformers model,
so the suite needs no network access.
"""

import hashlib
import re
from datetime import datetime

import pytest

from personal_knowledge_mcp.context import KnowledgeContext
from personal_knowledge_mcp.services import KnowledgeService, SessionService


class HashEmbedder:
    """Bag-of-words vectors hashed into buckets, plus a constant bias component

    The bias keeps cosine similarity between any two short texts well above
    the default 0.3 score threshold.
    """

    dimension = 32

    def __init__(self):
        self.calls = 0
        self.fail = False
        self.texts = []

    def generate_embedding(self, text):
        self.calls += 1
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("embedding model unavailable")
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % (self.dimension - 1)
            vector[bucket] += 1.0
        vector[-1] = 3.0
        return vector


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def context(tmp_path, embedder):
    ctx = KnowledgeContext(data_dir=tmp_path / "data", embedder=embedder).initialize()
    yield ctx
    ctx.shutdown()


@pytest.fixture
def db(context):
    return context.sqlite_store


@pytest.fixture
def knowledge(context):
    return KnowledgeService(context)


@pytest.fixture
def sessions(context):
    return SessionService(context)


@pytest.fixture
def backdate(context):
    """Move a timestamp column of one row into the past"""
    def _backdate(table, column, row_id, delta):
        store = context.sqlite_store
        with store._lock:
            store.conn.execute(
                f"UPDATE {table} SET {column} = ? WHERE id = ?",
                (datetime.now() - delta, row_id),
            )
            store.conn.commit()
    return _backdate
