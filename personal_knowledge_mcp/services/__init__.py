"""
Coordination services for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

from .knowledge_service import KnowledgeService
from .session_service import SessionService

__all__ = ['KnowledgeService', 'SessionService']
