"""Tests for session state and memory value types."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from memagent.core.session import CommunicationStyle, Preferences, SessionState
from memagent.memory.types import Memory, Role, Turn, parse_timestamp, rank_memories

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestSessionState:
    def test_defaults(self):
        state = SessionState(user_id="u1", session_id="s1")
        assert state.message_count == 0
        assert state.preferences.communication_style is CommunicationStyle.BALANCED
        assert state.preferences.topics == frozenset()

    def test_record_exchange_returns_new_state(self):
        state = SessionState(user_id="u1", session_id="s1")
        later = state.record_exchange(T0)

        assert later.message_count == 1
        assert later.last_interaction_time == T0
        assert state.message_count == 0

    def test_frozen(self):
        state = SessionState(user_id="u1", session_id="s1")
        with pytest.raises(FrozenInstanceError):
            state.message_count = 5


class TestPreferences:
    def test_from_config(self):
        prefs = Preferences.from_config({"topics": ["jazz"], "communication_style": "formal"})
        assert prefs.topics == frozenset({"jazz"})
        assert prefs.communication_style is CommunicationStyle.FORMAL

    def test_from_empty_config(self):
        assert Preferences.from_config(None) == Preferences()

    def test_unknown_style_rejected(self):
        with pytest.raises(ValueError):
            Preferences.from_config({"communication_style": "shouty"})

    def test_to_dict(self):
        prefs = Preferences(topics=frozenset({"b", "a"}))
        assert prefs.to_dict() == {"topics": ["a", "b"], "communicationStyle": "balanced"}


class TestTurn:
    def test_to_message(self):
        turn = Turn("id", "u1", "s1", T0, Role.ASSISTANT, "hello")
        assert turn.to_message() == {"role": "assistant", "content": "hello"}


class TestRankMemories:
    def test_score_then_importance_then_recency(self):
        old = Memory(text="old", importance_score=0.5, source_timestamp=T0, score=0.8)
        new = Memory(text="new", importance_score=0.5, source_timestamp=T0 + timedelta(days=1), score=0.8)
        important = Memory(text="important", importance_score=0.9, source_timestamp=T0, score=0.8)
        best = Memory(text="best", importance_score=0.1, source_timestamp=T0, score=0.95)

        ranked = rank_memories([old, new, important, best], limit=10)

        assert [m.text for m in ranked] == ["best", "important", "new", "old"]

    def test_limit(self):
        memories = [Memory(text=str(i), score=i / 10) for i in range(8)]
        assert [m.text for m in rank_memories(memories, limit=3)] == ["7", "6", "5"]

    def test_missing_timestamp_sorts_oldest(self):
        dated = Memory(text="dated", source_timestamp=T0, score=0.5)
        undated = Memory(text="undated", score=0.5)
        assert [m.text for m in rank_memories([undated, dated], 2)] == ["dated", "undated"]


class TestMemoryFromMatch:
    def test_reads_metadata(self):
        memory = Memory.from_match(
            {"content_preview": "likes jazz", "importance": 0.7, "timestamp": T0.isoformat()},
            score=0.9,
        )
        assert memory.text == "likes jazz"
        assert memory.importance_score == 0.7
        assert memory.source_timestamp == T0
        assert memory.score == 0.9

    def test_defaults_and_clamping(self):
        memory = Memory.from_match({"content_preview": "x", "importance": 3}, score=0.1)
        assert memory.importance_score == 1.0
        assert memory.source_timestamp is None
        assert Memory.from_match({}, 0.2, default_importance=0.4).importance_score == 0.4


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2025-03-01T12:00:00") == T0
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None
