"""
Utility functions for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

import sys
import sqlite3
import logging
import traceback
from datetime import datetime
from typing import Any, Dict, List, Union, Optional

logger = logging.getLogger("personal-knowledge.utils")

ERROR_LOG_LIMIT = 100

NOISY_LOGGERS = ["qdrant_client", "sentence_transformers", "urllib3", "httpx", "httpcore"]


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage"""
    # Fixed width keeps lexical ordering equal to chronological ordering
    return dt.isoformat(timespec="microseconds")


def _convert_timestamp(val: Union[str, bytes]) -> Optional[datetime]:
    """Convert timestamp string to datetime with error handling"""
    try:
        decoded = val.decode() if isinstance(val, bytes) else val
        return datetime.fromisoformat(decoded)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Failed to convert timestamp: {val}, error: {e}")
        return None


def register_sqlite_adapters():
    """Register SQLite adapters for datetime handling"""
    sqlite3.register_adapter(datetime, _adapt_datetime)
    sqlite3.register_converter("TIMESTAMP", _convert_timestamp)


def configure_logging(level: str = "INFO"):
    """Send log output to stderr so stdout stays free for the MCP stream"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


def record_error(error_log: List[Dict[str, Any]], operation: str, error: Exception):
    """Append detailed error information to a shared, bounded error log"""
    error_log.append({
        "timestamp": datetime.now().isoformat(),
        "operation": operation,
        "error_type": type(error).__name__,
        "error_msg": str(error),
        "traceback": traceback.format_exc(),
    })
    if len(error_log) > ERROR_LOG_LIMIT:
        del error_log[:-ERROR_LOG_LIMIT]
