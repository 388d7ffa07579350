"""
Configuration tests for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

import logging

import pytest

from personal_knowledge_mcp.config import (
    COLLECTION_NAME,
    DATA_DIR_ENV,
    DEFAULT_DATA_DIR,
    load_config,
)
from personal_knowledge_mcp.utils import ERROR_LOG_LIMIT, configure_logging, record_error


def test_defaults(monkeypatch):
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)
    config = load_config()

    assert config["data_dir"] == DEFAULT_DATA_DIR
    assert config["db_path"] == DEFAULT_DATA_DIR / "knowledge.db"
    assert config["vector_path"] == DEFAULT_DATA_DIR / "vectors"
    assert config["collection_name"] == COLLECTION_NAME
    assert config["vector_size"] == 384


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path))
    monkeypatch.setenv("PK_QDRANT_MAX_RETRIES", "5")
    monkeypatch.setenv("PK_LOG_LEVEL", "DEBUG")

    config = load_config()
    assert config["data_dir"] == tmp_path
    assert config["qdrant_max_retries"] == 5
    assert config["log_level"] == "DEBUG"


def test_explicit_data_dir_beats_environment(monkeypatch, tmp_path):
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "env"))
    assert load_config(data_dir=tmp_path / "arg")["data_dir"] == tmp_path / "arg"


def test_unknown_embedding_model(tmp_path):
    with pytest.raises(ValueError):
        load_config(data_dir=tmp_path, embedding_model="not-a-model")


def test_error_log_is_bounded():
    error_log = []
    for i in range(ERROR_LOG_LIMIT + 5):
        record_error(error_log, "op", RuntimeError(f"failure {i}"))

    assert len(error_log) == ERROR_LOG_LIMIT
    assert error_log[-1]["error_msg"] == f"failure {ERROR_LOG_LIMIT + 4}"
    assert error_log[0]["error_type"] == "RuntimeError"


def test_configure_logging_silences_libraries():
    configure_logging("INFO")
    assert logging.getLogger("qdrant_client").level == logging.CRITICAL
