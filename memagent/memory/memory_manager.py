"""
Memory Agent Memory Manager
============================
The agent's long-term memory. Orchestrates:
  1. Recalling memories relevant to an incoming message
  2. Remembering finished turns so later sessions can recall them

Recall flow:
  User says: "Any good records for tonight?"

  Memory Manager:
    embed("Any good records for tonight?")
      -> MemoryIndex.query(vector, top_k, filter={"user_id": ...})
      -> ranked Memories:
           0.91  "I mostly listen to jazz these days"
           0.74  "Coltrane's Blue Train is a classic..."

  The PromptAssembler renders these into the system prompt.

Memories outlive sessions: they are scoped by user only, so a new
connection recalls what earlier connections stored.
"""

from memagent.memory.embedder import EmbeddingService
from memagent.memory.memory_index import MemoryIndex
from memagent.memory.types import Memory, Role, rank_memories
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("memory.manager")


class MemoryManager:
    """
    Recall and remember memories for the conversation pipeline.
    """

    def __init__(self, embedder: EmbeddingService, index: MemoryIndex, config: dict = None):
        config = config or load_config()
        mem_cfg = config["memory"]

        self.embedder = embedder
        self.index = index
        self.top_k: int = mem_cfg.get("top_k", 5)
        self.preview_chars: int = mem_cfg.get("preview_chars", 200)
        self.default_importance: float = mem_cfg.get("default_importance", 0.5)
        self.index_roles = {Role(r) for r in mem_cfg.get("index_roles", ["user", "assistant"])}

    async def recall(self, user_id: str, text: str, limit: int = None) -> list:
        """
        Find memories relevant to `text`.

        Args:
            user_id: Only this user's memories are searched.
            text: The incoming message.
            limit: Max memories (defaults to memory.top_k).

        Returns:
            Memories ranked by similarity, then importance, then recency.
        """
        limit = self.top_k if limit is None else limit
        if limit <= 0 or not text.strip():
            return []

        vector = await self.embedder.embed(text)
        matches = await self.index.query(vector, top_k=limit, filter={"user_id": user_id})

        memories = [
            Memory.from_match(m.metadata, m.score, self.default_importance)
            for m in matches
        ]
        memories = [m for m in memories if m.text]

        logger.debug(f"  Recalled {len(memories)} memories for {user_id}")
        return rank_memories(memories, limit)

    async def remember(self, turns: list) -> int:
        """
        Embed and index finished turns (one batch embedding call).

        Returns:
            Number of turns indexed.
        """
        turns = [t for t in turns if t.role in self.index_roles and t.content.strip()]
        if not turns:
            return 0

        vectors = await self.embedder.embed([t.content for t in turns])
        items = [
            (f"{t.user_id}-{t.id}", vector, self._metadata(t))
            for t, vector in zip(turns, vectors)
        ]
        await self.index.upsert_many(items)
        return len(items)

    def _metadata(self, turn) -> dict:
        return {
            "user_id": turn.user_id,
            "session_id": turn.session_id,
            "role": turn.role.value,
            "content_preview": turn.content[: self.preview_chars],
            "timestamp": turn.timestamp.isoformat(),
            "importance": self.default_importance,
        }

    def get_stats(self) -> dict:
        """Memory system stats for logging."""
        return {
            "total_memories": self.index.count(),
            "top_k": self.top_k,
        }
