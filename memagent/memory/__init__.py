"""
Memory Agent Memory System
===========================
Durable conversation log plus long-term semantic memory:
  - ConversationStore: append-only turn log (SQLite)
  - MemoryIndex: per-user vector search (ChromaDB)
  - EmbeddingService: text -> vector (Ollama)
  - MemoryManager: orchestrates recall and remember
"""

from memagent.memory.conversation_store import ConversationStore
from memagent.memory.embedder import EmbeddingService
from memagent.memory.memory_index import MemoryIndex
from memagent.memory.memory_manager import MemoryManager
from memagent.memory.types import Memory, Role, Turn

__all__ = [
    "ConversationStore",
    "EmbeddingService",
    "MemoryIndex",
    "MemoryManager",
    "Memory",
    "Role",
    "Turn",
]
