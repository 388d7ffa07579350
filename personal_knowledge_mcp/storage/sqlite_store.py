"""
SQLite persistence store for Personal Knowledge MCP
Copyright 2025 Jurden Bruce

SQLite is the source of truth for knowledge entries, sessions and session
messages. Errors are recorded and re-raised; callers decide what is fatal.
"""

import sqlite3
import json
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from pathlib import Path

from ..models import KnowledgeEntry, Session, SessionMessage
from ..utils import record_error

logger = logging.getLogger("personal-knowledge.sqlite")

MIN_TERM_LENGTH = 3

SCHEMA = """
    CREATE TABLE IF NOT EXISTS knowledge_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        source TEXT,
        tags TEXT,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT,
        started_at TIMESTAMP NOT NULL,
        ended_at TIMESTAMP,
        summary TEXT,
        is_active INTEGER DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS session_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL REFERENCES sessions(id),
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_tags ON knowledge_entries(tags);
    CREATE INDEX IF NOT EXISTS idx_created ON knowledge_entries(created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_updated ON knowledge_entries(updated_at DESC);
    CREATE INDEX IF NOT EXISTS idx_session_messages ON session_messages(session_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_sessions_active ON sessions(is_active);
"""


def connect(db_path: Path) -> sqlite3.Connection:
    """Open the shared connection used by every store operation"""
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=False,
        timeout=30.0,
        isolation_level="IMMEDIATE",
        detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteStore:
    """Handles all SQLite database operations"""

    def __init__(self, db_path: Path, db_conn, db_lock, error_log: List[Dict[str, Any]]):
        self.db_path = db_path
        self.conn = db_conn
        self._lock = db_lock
        self.error_log = error_log

    def initialize(self):
        """Create tables and indexes"""
        try:
            with self._lock:
                self.conn.executescript(SCHEMA)
                self.conn.commit()
            logger.info(f"SQLite initialized at {self.db_path}")
        except Exception as e:
            logger.error(f"SQLite initialization failed: {e}")
            record_error(self.error_log, "sqlite_init", e)
            raise

    def _write(self, operation: str, sql: str, params=()) -> sqlite3.Cursor:
        """Execute a single write statement and commit, rolling back on failure"""
        with self._lock:
            try:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor
            except Exception as e:
                self.conn.rollback()
                logger.error(f"SQLite {operation} failed: {e}")
                record_error(self.error_log, operation, e)
                raise

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _query_one(self, sql: str, params=()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    # ===== KNOWLEDGE ENTRIES =====

    def save_entry(self, title: str, content: str, source: Optional[str] = None,
                   tags: Optional[List[str]] = None) -> int:
        """Insert a knowledge entry and return its id"""
        now = datetime.now()
        cursor = self._write("save_entry", """
            INSERT INTO knowledge_entries (title, content, source, tags, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (title, content, source or None, json.dumps(tags) if tags is not None else None, now, now))
        return cursor.lastrowid

    def get_entry(self, entry_id: int) -> Optional[KnowledgeEntry]:
        row = self._query_one("SELECT * FROM knowledge_entries WHERE id = ?", (entry_id,))
        return self._row_to_entry(row) if row else None

    def update_entry(self, entry_id: int, updates: Dict[str, Any]) -> bool:
        """Merge the given fields into an existing entry; None values keep the current value"""
        existing = self.get_entry(entry_id)
        if not existing:
            return False

        title = updates.get("title")
        content = updates.get("content")
        source = updates.get("source")
        tags = updates.get("tags")

        self._write("update_entry", """
            UPDATE knowledge_entries
            SET title = ?, content = ?, source = ?, tags = ?, updated_at = ?
            WHERE id = ?
        """, (
            title if title is not None else existing.title,
            content if content is not None else existing.content,
            source if source is not None else existing.source,
            json.dumps(tags if tags is not None else existing.tags)
            if (tags is not None or existing.tags is not None) else None,
            datetime.now(),
            entry_id,
        ))
        return True

    def delete_entry(self, entry_id: int) -> bool:
        cursor = self._write("delete_entry", "DELETE FROM knowledge_entries WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    def list_entries(self, limit: int = 20, offset: int = 0,
                     tags: Optional[List[str]] = None) -> List[KnowledgeEntry]:
        """List entries newest first; a tag filter matches entries carrying ANY of the tags"""
        sql = "SELECT * FROM knowledge_entries"
        params: List[Any] = []

        if tags:
            placeholders = ", ".join("?" for _ in tags)
            sql += (
                " WHERE tags IS NOT NULL AND EXISTS ("
                f"SELECT 1 FROM json_each(knowledge_entries.tags) WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(tags)

        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        return [self._row_to_entry(row) for row in self._query(sql, params)]

    def search_text(self, query: str, limit: int = 10) -> List[KnowledgeEntry]:
        """Case-insensitive keyword search over title and content, any term matching"""
        terms = [word for word in query.lower().split() if len(word) >= MIN_TERM_LENGTH]
        if not terms:
            return []

        conditions = " OR ".join(
            "(LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(content) LIKE ? ESCAPE '\\')" for _ in terms
        )
        params: List[Any] = []
        for term in terms:
            pattern = f"%{_escape_like(term)}%"
            params.extend([pattern, pattern])
        params.append(limit)

        rows = self._query(f"""
            SELECT * FROM knowledge_entries
            WHERE {conditions}
            ORDER BY updated_at DESC
            LIMIT ?
        """, params)
        return [self._row_to_entry(row) for row in rows]

    def get_all_entries(self) -> List[KnowledgeEntry]:
        rows = self._query("SELECT * FROM knowledge_entries ORDER BY id")
        return [self._row_to_entry(row) for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        """Entry count, per-tag counts and created_at range"""
        with self._lock:
            total = self.conn.execute("SELECT COUNT(*) FROM knowledge_entries").fetchone()[0]
            oldest, newest = self.conn.execute(
                'SELECT MIN(created_at) AS "oldest [TIMESTAMP]", MAX(created_at) AS "newest [TIMESTAMP]" '
                "FROM knowledge_entries"
            ).fetchone()
            tag_rows = self.conn.execute(
                "SELECT tags FROM knowledge_entries WHERE tags IS NOT NULL"
            ).fetchall()

        tag_counts: Dict[str, int] = {}
        for row in tag_rows:
            for tag in json.loads(row["tags"]):
                tag_counts[tag] = tag_counts.get(tag, 0) + 1

        return {
            "total_entries": total,
            "tag_counts": tag_counts,
            "oldest_entry": oldest,
            "newest_entry": newest,
        }

    def _row_to_entry(self, row) -> KnowledgeEntry:
        return KnowledgeEntry(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            source=row["source"],
            tags=json.loads(row["tags"]) if row["tags"] else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ===== SESSIONS =====

    def create_session(self, name: Optional[str] = None) -> int:
        cursor = self._write("create_session", """
            INSERT INTO sessions (name, started_at, is_active) VALUES (?, ?, 1)
        """, (name or None, datetime.now()))
        return cursor.lastrowid

    def get_session(self, session_id: int) -> Optional[Session]:
        row = self._query_one("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return self._row_to_session(row) if row else None

    def get_active_session(self) -> Optional[Session]:
        """Most recently created session that is still active"""
        row = self._query_one("SELECT * FROM sessions WHERE is_active = 1 ORDER BY id DESC LIMIT 1")
        return self._row_to_session(row) if row else None

    def end_session(self, session_id: int, summary: Optional[str] = None) -> bool:
        """Mark an active session ended; ended sessions are left untouched"""
        cursor = self._write("end_session", """
            UPDATE sessions
            SET ended_at = ?, summary = ?, is_active = 0
            WHERE id = ? AND is_active = 1
        """, (datetime.now(), summary, session_id))
        return cursor.rowcount > 0

    def list_sessions(self, limit: int = 20, offset: int = 0, active_only: bool = False) -> List[Session]:
        sql = "SELECT * FROM sessions"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
        return [self._row_to_session(row) for row in self._query(sql, (limit, offset))]

    def close_timed_out_sessions(self, timeout: timedelta, summary: str,
                                 now: Optional[datetime] = None) -> int:
        """End active sessions whose start and latest message are both older than the timeout"""
        now = now or datetime.now()
        cutoff = now - timeout
        cursor = self._write("close_timed_out_sessions", """
            UPDATE sessions
            SET is_active = 0, ended_at = ?, summary = ?
            WHERE is_active = 1 AND id IN (
                SELECT s.id FROM sessions s
                LEFT JOIN (
                    SELECT session_id, MAX(created_at) AS last_msg
                    FROM session_messages
                    GROUP BY session_id
                ) m ON s.id = m.session_id
                WHERE s.is_active = 1
                AND (m.last_msg IS NULL OR m.last_msg < ?)
                AND s.started_at < ?
            )
        """, (now, summary, cutoff, cutoff))
        if cursor.rowcount:
            logger.info(f"Closed {cursor.rowcount} timed-out session(s)")
        return cursor.rowcount

    def get_session_stats(self) -> Dict[str, int]:
        with self._lock:
            total, active = self.conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(is_active), 0) FROM sessions"
            ).fetchone()
            messages = self.conn.execute("SELECT COUNT(*) FROM session_messages").fetchone()[0]
        return {
            "total_sessions": total,
            "active_sessions": active,
            "total_messages": messages,
        }

    def _row_to_session(self, row) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            summary=row["summary"],
            is_active=row["is_active"] == 1,
        )

    # ===== SESSION MESSAGES =====

    def save_message(self, session_id: int, role: str, content: str) -> int:
        cursor = self._write("save_message", """
            INSERT INTO session_messages (session_id, role, content, created_at)
            VALUES (?, ?, ?, ?)
        """, (session_id, role, content, datetime.now()))
        return cursor.lastrowid

    def get_messages(self, session_id: int) -> List[SessionMessage]:
        rows = self._query(
            "SELECT * FROM session_messages WHERE session_id = ? ORDER BY created_at ASC, id ASC",
            (session_id,),
        )
        return [
            SessionMessage(
                id=row["id"],
                session_id=row["session_id"],
                role=row["role"],
                content=row["content"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def get_message_count(self, session_id: int) -> int:
        row = self._query_one("SELECT COUNT(*) FROM session_messages WHERE session_id = ?", (session_id,))
        return row[0]

    def close(self):
        """Close database connection"""
        if self.conn:
            try:
                with self._lock:
                    self.conn.close()
                logger.info("SQLite connection closed")
            except Exception as e:
                logger.error(f"Error closing SQLite: {e}")
            finally:
                self.conn = None
