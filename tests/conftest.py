"""Pytest fixtures: in-memory collaborators for the conversation pipeline."""

import asyncio
import time

import pytest

from memagent.core.controller import ConversationController
from memagent.core.errors import GenerationError

DEGRADED = "Model unavailable, please retry."


class FakeStore:
    """Append-only list standing in for the SQLite store."""

    def __init__(self):
        self.turns = []
        self.init_calls = 0
        self.append_attempts = []
        self.fail_user_writes = False
        self.assistant_failures = 0
        self.fail_reads = False
        # role -> seconds; a delayed write commits in a thread, so a cancelled caller cannot stop it
        self.write_delay = {}

    async def initialize(self):
        self.init_calls += 1

    async def append(self, turn):
        self.append_attempts.append(turn)
        delay = self.write_delay.get(turn.role.value)
        if delay:
            return await asyncio.to_thread(self._commit, turn, delay)
        return self._commit(turn)

    def _commit(self, turn, delay=0):
        time.sleep(delay)
        if turn.role.value == "user" and self.fail_user_writes:
            raise RuntimeError("store unavailable")
        if turn.role.value == "assistant" and self.assistant_failures > 0:
            self.assistant_failures -= 1
            raise RuntimeError("store unavailable")
        self.turns.append(turn)
        return turn

    async def query_recent(self, user_id, session_id, limit):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        matching = [t for t in self.turns if t.user_id == user_id and t.session_id == session_id]
        return list(reversed(matching))[:limit]

    async def close(self):
        pass


class FakeMemory:
    """MemoryManager stand-in returning canned memories."""

    def __init__(self):
        self.memories = []
        self.fail_recall = False
        self.fail_remember = False
        self.recall_calls = []
        self.remembered = []
        self.recall_delay = 0

    async def recall(self, user_id, text, limit=None):
        self.recall_calls.append((user_id, text, limit))
        if self.recall_delay:
            await asyncio.sleep(self.recall_delay)
        if self.fail_recall:
            raise RuntimeError("index unavailable")
        return list(self.memories)[:limit]

    async def remember(self, turns):
        if self.fail_remember:
            raise RuntimeError("index unavailable")
        self.remembered.extend(turns)
        return len(turns)

    def get_stats(self):
        return {"total_memories": len(self.remembered)}


class FakeGenerator:
    """Yields canned chunks; can fail after N chunks or hang after them."""

    model = "fake"

    def __init__(self):
        self.chunks = ["Hello", ", ", "there!"]
        self.fail_after = None
        self.hang_after_chunks = False
        self.hanging = asyncio.Event()
        self.requests = []
        self.active = 0
        self.max_active = 0

    def is_available(self):
        return True

    async def stream(self, messages):
        self.requests.append(messages)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_after == i:
                    raise GenerationError("backend exploded")
                await asyncio.sleep(0)
                yield chunk
            if self.fail_after == len(self.chunks):
                raise GenerationError("backend exploded")
            if self.hang_after_chunks:
                self.hanging.set()
                await asyncio.Event().wait()
        finally:
            self.active -= 1

    async def complete(self, messages):
        self.requests.append(messages)
        if self.fail_after is not None:
            raise GenerationError("backend exploded")
        return "".join(self.chunks)


class EventRecorder:
    """Async `send` callable that records every event."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def of_type(self, kind):
        return [e for e in self.events if e["type"] == kind]

    def types(self):
        return [e["type"] for e in self.events]


@pytest.fixture
def config():
    """Minimal config for controller-level tests."""
    return {
        "server": {"default_user_id": "default-user"},
        "memory": {"top_k": 5},
        "generation": {"stream": True},
        "conversation": {
            "history_limit": 10,
            "close_timeout_seconds": 2,
            "default_preferences": {"topics": ["music"], "communication_style": "casual"},
        },
        "prompt": {
            "system_preamble": "You are a helpful AI assistant with memory of past conversations.",
            "closing_instruction": "Respond naturally.",
            "max_memory_chars": 2000,
        },
        "degradation": {
            "degraded_message": DEGRADED,
            "timeouts": {
                "schema_init": 1,
                "user_turn_write": 1,
                "history_read": 1,
                "memory_retrieval": 1,
                "generation": 2,
                "assistant_turn_write": 1,
                "memory_index": 1,
            },
        },
    }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def memory():
    return FakeMemory()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_controller(config, store, memory, generator, recorder):
    """Factory so tests can tweak config before building the controller."""

    def _make(**overrides):
        return ConversationController(
            recorder,
            overrides.get("store", store),
            overrides.get("memory", memory),
            overrides.get("generator", generator),
            config=overrides.get("config", config),
        )

    return _make
