"""
Data models for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, List, Dict, Optional

ROLES = ("user", "agent")

KIND_KNOWLEDGE = "knowledge"
KIND_MESSAGE = "message"


def _parse_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class KnowledgeEntry:
    id: int
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    source: Optional[str] = None
    tags: Optional[List[str]] = None

    def __post_init__(self):
        self.created_at = _parse_datetime(self.created_at)
        self.updated_at = _parse_datetime(self.updated_at)

    def embedding_text(self, max_chars: int) -> str:
        """Text fed to the encoder: title plus the head of the content"""
        return f"{self.title}\n{self.content[:max_chars]}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _format_datetime(self.created_at)
        data["updated_at"] = _format_datetime(self.updated_at)
        return data


@dataclass
class Session:
    id: int
    started_at: datetime
    name: Optional[str] = None
    ended_at: Optional[datetime] = None
    summary: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        self.started_at = _parse_datetime(self.started_at)
        self.ended_at = _parse_datetime(self.ended_at)
        self.is_active = bool(self.is_active)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = _format_datetime(self.started_at)
        data["ended_at"] = _format_datetime(self.ended_at)
        return data


@dataclass
class SessionMessage:
    id: int
    session_id: int
    role: str  # user | agent
    content: str
    created_at: datetime

    def __post_init__(self):
        self.created_at = _parse_datetime(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _format_datetime(self.created_at)
        return data


@dataclass
class SearchResult:
    """Denormalised projection of a vector record, ranked by similarity"""
    id: int
    title: str
    content_preview: str
    score: float
    tags: List[str] = field(default_factory=list)
    kind: str = KIND_KNOWLEDGE

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], score: float) -> "SearchResult":
        return cls(
            id=payload["source_id"],
            title=payload.get("title", ""),
            content_preview=payload.get("content_preview", ""),
            score=score,
            tags=list(payload.get("tags") or []),
            kind=payload.get("kind", KIND_KNOWLEDGE),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
