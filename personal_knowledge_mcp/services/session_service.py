"""
Session service for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

Sessions go ACTIVE -> ENDED, either explicitly or through the inactivity
sweep, and never back. Only one session is active at a time: starting a
session ends whichever one is still open.

The "current session" is state of this service instance. It is not
persisted, so after a restart callers must pass a session id explicitly
until a new session is started.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config import (
    CONTENT_PREVIEW_CHARS,
    DEFAULT_MIN_SCORE,
    EMBED_CONTENT_CHARS,
    NEW_SESSION_SUMMARY,
    SESSION_TIMEOUT,
    TIMEOUT_SUMMARY,
)
from ..errors import NoActiveSessionError, SessionClosedError, SessionNotFoundError
from ..models import KIND_MESSAGE, ROLES, SearchResult, Session
from ..utils import record_error

logger = logging.getLogger("personal-knowledge.sessions")

SESSION_TAG_PREFIX = "session:"

# Session searches fetch this many raw candidates per requested result
# before filtering by tag on the client side.
OVERFETCH_FACTOR = 2


def session_tag(session_id: int) -> str:
    return f"{SESSION_TAG_PREFIX}{session_id}"


class SessionService:
    def __init__(self, context):
        self.context = context
        self.db = context.sqlite_store
        self.vectors = context.qdrant_store
        self.current_session_id: Optional[int] = None

    def _resolve(self, session_id: Optional[int]) -> Optional[int]:
        return session_id if session_id is not None else self.current_session_id

    def start_logging_session(self, name: Optional[str] = None) -> Dict[str, Any]:
        """End any open session, then create and select a new one"""
        self.close_timed_out_sessions()

        existing = self.db.get_active_session()
        if existing:
            self.db.end_session(existing.id, NEW_SESSION_SUMMARY)
            logger.info(f"Auto-closed session {existing.id} before starting a new one")

        session_id = self.db.create_session(name)
        self.current_session_id = session_id

        session = self.db.get_session(session_id)
        if not session:
            raise RuntimeError("Failed to create session")

        logger.info(f"Started session {session_id}" + (f" ({name})" if name else ""))
        return {"session_id": session_id, "session": session}

    async def log_message(self, role: str, content: str,
                          session_id: Optional[int] = None) -> Dict[str, Any]:
        """Append a message to the given or current session and index it"""
        if role not in ROLES:
            raise ValueError(f"Role must be one of {', '.join(ROLES)}, got {role!r}")

        target_id = self._resolve(session_id)
        if target_id is None:
            raise NoActiveSessionError()

        session = self.db.get_session(target_id)
        if not session:
            raise SessionNotFoundError(target_id)
        if not session.is_active:
            raise SessionClosedError(target_id)

        message_id = self.db.save_message(target_id, role, content)

        title = f"[{role}] Session {target_id}"
        indexed = False
        try:
            indexed = await self.vectors.upsert(
                KIND_MESSAGE,
                message_id,
                f"{title}\n{content[:EMBED_CONTENT_CHARS]}",
                title=title,
                content_preview=content[:CONTENT_PREVIEW_CHARS],
                tags=[session_tag(target_id), f"role:{role}"],
            )
        except Exception as e:
            logger.error(f"Vector indexing failed for session message {message_id}: {e}")
            record_error(self.context.error_log, "index_message", e)

        return {"message_id": message_id, "indexed": indexed}

    async def _search_tagged(self, query: str, limit: int, matches) -> List[SearchResult]:
        results = await self.vectors.query(query, limit=limit * OVERFETCH_FACTOR, min_score=DEFAULT_MIN_SCORE)
        return [r for r in results if matches(r.tags)][:limit]

    async def search_session(self, session_id: int, query: str, limit: int = 5) -> List[SearchResult]:
        """Semantic search restricted to one session's messages"""
        tag = session_tag(session_id)
        return await self._search_tagged(query, limit, lambda tags: tag in tags)

    async def search_all_sessions(self, query: str, limit: int = 10) -> List[SearchResult]:
        """Semantic search over messages from every session"""
        return await self._search_tagged(
            query, limit, lambda tags: any(t.startswith(SESSION_TAG_PREFIX) for t in tags)
        )

    def end_session(self, session_id: Optional[int] = None,
                    summary: Optional[str] = None) -> Dict[str, Any]:
        """End the given or current session"""
        target_id = self._resolve(session_id)
        if target_id is None:
            return {"success": False, "message_count": 0}

        message_count = self.db.get_message_count(target_id)
        success = self.db.end_session(target_id, summary)

        if success:
            logger.info(f"Ended session {target_id} ({message_count} messages)")
            if target_id == self.current_session_id:
                self.current_session_id = None

        return {"success": success, "message_count": message_count}

    def close_timed_out_sessions(self) -> int:
        """Close sessions idle for longer than the session timeout"""
        closed = self.db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY)

        if self.current_session_id is not None:
            current = self.db.get_session(self.current_session_id)
            if not current or not current.is_active:
                self.current_session_id = None

        return closed

    def get_session(self, session_id: int) -> Optional[Dict[str, Any]]:
        """Session with its messages, or None"""
        session = self.db.get_session(session_id)
        if not session:
            return None

        return {
            "session": session,
            "messages": self.db.get_messages(session_id),
            "message_count": self.db.get_message_count(session_id),
        }

    def list_sessions(self, limit: int = 20, offset: int = 0, active_only: bool = False) -> List[Session]:
        return self.db.list_sessions(limit=limit, offset=offset, active_only=active_only)

    def get_active_session(self) -> Optional[Session]:
        return self.db.get_active_session()

    def has_active_session(self) -> bool:
        """True only when this process selected a session AND an active one is persisted"""
        return self.current_session_id is not None and self.db.get_active_session() is not None

    def get_session_stats(self) -> Dict[str, int]:
        return self.db.get_session_stats()
