"""
Memory Agent Data Types
========================
Turn:   one stored utterance, immutable once persisted.
Memory: a previously stored utterance recalled by semantic similarity.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One utterance in a conversation, ordered by timestamp within a session."""

    id: str
    user_id: str
    session_id: str
    timestamp: datetime
    role: Role
    content: str

    def to_message(self) -> dict:
        """Role-tagged chat message for a generation request."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Memory:
    """A recalled memory with the similarity score of the query that found it."""

    text: str
    importance_score: float = 0.5
    source_timestamp: Optional[datetime] = None
    score: float = 0.0

    @classmethod
    def from_match(cls, metadata: dict, score: float, default_importance: float = 0.5) -> "Memory":
        """Build a Memory from vector index metadata."""
        importance = metadata.get("importance", default_importance)
        return cls(
            text=str(metadata.get("content_preview", "")),
            importance_score=min(max(float(importance), 0.0), 1.0),
            source_timestamp=parse_timestamp(metadata.get("timestamp")),
            score=float(score),
        )


def rank_memories(memories: list, limit: int) -> list:
    """
    Order memories by similarity, then importance, then recency; keep `limit`.

    Memories without a source timestamp sort as the oldest.
    """
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    ranked = sorted(
        memories,
        key=lambda m: (m.score, m.importance_score, m.source_timestamp or oldest),
        reverse=True,
    )
    return ranked[:limit]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime; None if unusable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
