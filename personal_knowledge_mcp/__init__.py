"""
Personal Knowledge MCP - knowledge entries and session memory for AI agents
Copyright 2025 Jurden Bruce
"""

__version__ = "1.0.0"

from .context import KnowledgeContext
from .models import KnowledgeEntry, Session, SessionMessage, SearchResult
from .services import KnowledgeService, SessionService
from .utils import register_sqlite_adapters

__all__ = [
    'KnowledgeContext',
    'KnowledgeEntry',
    'Session',
    'SessionMessage',
    'SearchResult',
    'KnowledgeService',
    'SessionService',
    'register_sqlite_adapters',
]
