"""
Memory Agent Session State
===========================
In-memory record of one live connection: identity, counters, preferences.

SessionState is a frozen value. The owning ConversationController replaces
it wholesale after each change, so no other code can mutate a session behind
the controller's back. Nothing here is persisted: session identity is
ephemeral, memory is durable.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from memagent.memory.types import utc_now


class CommunicationStyle(str, Enum):
    BALANCED = "balanced"
    CONCISE = "concise"
    DETAILED = "detailed"
    CASUAL = "casual"
    FORMAL = "formal"


@dataclass(frozen=True)
class Preferences:
    topics: frozenset = frozenset()
    communication_style: CommunicationStyle = CommunicationStyle.BALANCED

    @classmethod
    def from_config(cls, prefs_cfg: dict = None) -> "Preferences":
        prefs_cfg = prefs_cfg or {}
        return cls(
            topics=frozenset(prefs_cfg.get("topics") or ()),
            communication_style=CommunicationStyle(
                prefs_cfg.get("communication_style", CommunicationStyle.BALANCED.value)
            ),
        )

    def to_dict(self) -> dict:
        """JSON-friendly form used in the system prompt."""
        return {
            "topics": sorted(self.topics),
            "communicationStyle": self.communication_style.value,
        }


@dataclass(frozen=True)
class SessionState:
    user_id: str
    session_id: str
    message_count: int = 0
    last_interaction_time: datetime = field(default_factory=utc_now)
    preferences: Preferences = field(default_factory=Preferences)

    def record_exchange(self, when: datetime = None) -> "SessionState":
        """State after one more completed user/assistant pair."""
        return replace(
            self,
            message_count=self.message_count + 1,
            last_interaction_time=when or utc_now(),
        )
