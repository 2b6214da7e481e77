"""
Memory Agent Memory Index
==========================
Semantic nearest-neighbour search over embedded turns, scoped by user.

Backed by a ChromaDB collection in cosine space. Vectors are supplied by
EmbeddingService, so the collection never embeds documents itself. The stored
document is the truncated content preview, which keeps the collection
browsable with stock ChromaDB tooling.

ChromaDB's client is synchronous; every call runs in a worker thread so the
event loop keeps serving other sessions.
"""

import asyncio
import os
from dataclasses import dataclass, field

import chromadb

from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("memory.index")


@dataclass(frozen=True)
class Match:
    """One nearest-neighbour hit."""

    id: str
    score: float
    metadata: dict = field(default_factory=dict)


class MemoryIndex:
    """
    Upsert and query embedded memories.
    """

    def __init__(self, config: dict = None, client=None):
        config = config or load_config()
        mem_cfg = config["memory"]

        if client is None:
            storage_dir = os.path.expanduser(mem_cfg["storage_dir"])
            os.makedirs(storage_dir, exist_ok=True)
            client = chromadb.PersistentClient(path=storage_dir)

        self.client = client
        self.collection = self.client.get_or_create_collection(
            name=mem_cfg["collection_name"],
            metadata={"hnsw:space": "cosine"},
        )

        logger.info(f"MemoryIndex ready: {self.collection.count()} memories stored")

    async def upsert(self, id: str, vector: list, metadata: dict) -> None:
        """Insert or replace a single memory vector."""
        await self.upsert_many([(id, vector, metadata)])

    async def upsert_many(self, items: list) -> None:
        """
        Insert or replace several memories in one call.

        Args:
            items: (id, vector, metadata) tuples. Metadata values must be
                   str, int, float or bool.
        """
        if not items:
            return

        ids = [item[0] for item in items]
        await asyncio.to_thread(
            self.collection.upsert,
            ids=ids,
            embeddings=[list(item[1]) for item in items],
            metadatas=[item[2] for item in items],
            documents=[str(item[2].get("content_preview", "")) for item in items],
        )
        logger.debug(f"Indexed {len(ids)} memories: {ids}")

    async def query(self, vector: list, top_k: int, filter: dict = None) -> list:
        """
        Find the stored memories closest to `vector`.

        Args:
            vector: Query embedding.
            top_k: Maximum number of matches.
            filter: Exact-match metadata filter, e.g. {"user_id": "u1"}.

        Returns:
            List of Match ordered by score descending. The score is cosine
            similarity (1 - cosine distance).
        """
        if top_k <= 0:
            return []

        results = await asyncio.to_thread(
            self.collection.query,
            query_embeddings=[list(vector)],
            n_results=top_k,
            where=_where_clause(filter),
            include=["metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0] or [{}] * len(ids)
        distances = (results.get("distances") or [[]])[0] or [1.0] * len(ids)

        matches = [
            Match(id=ids[i], score=1.0 - float(distances[i]), metadata=dict(metadatas[i] or {}))
            for i in range(len(ids))
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def count(self) -> int:
        return self.collection.count()


def _where_clause(filter: dict):
    """ChromaDB wants multiple equality filters wrapped in $and."""
    if not filter:
        return None
    if len(filter) == 1:
        return dict(filter)
    return {"$and": [{key: value} for key, value in filter.items()]}
