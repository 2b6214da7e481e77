"""
Memory Agent Embedding Service
===============================
Turns text into fixed-length vectors using an Ollama embedding model
(default: nomic-embed-text) through Ollama's REST API (localhost:11434).

Both arities are supported:
    await embedder.embed("hello")            -> [0.12, ...]
    await embedder.embed(["a", "b"])         -> [[...], [...]]

The HTTP call is blocking (requests), so it runs in a worker thread.
"""

import asyncio

import requests

from memagent.core.errors import EnhancementError
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("memory.embedder")


class EmbeddingService:
    """
    Embeds one string or a batch of strings.
    """

    def __init__(self, config: dict = None):
        config = config or load_config()
        emb_cfg = config["embedding"]

        self.base_url: str = emb_cfg["base_url"].rstrip("/")
        self.model: str = emb_cfg["model"]
        self.timeout: float = emb_cfg.get("timeout", 30)

        logger.info(f"Embedder: Ollama @ {self.base_url}, model={self.model}")

    async def embed(self, text):
        """
        Embed text.

        Args:
            text: A string, or a list of strings.

        Returns:
            One vector for a string input, a list of vectors for a list input.

        Raises:
            EnhancementError: If Ollama returns a malformed payload.
            requests.RequestException: On transport or HTTP errors.
        """
        single = isinstance(text, str)
        inputs = [text] if single else list(text)
        if not inputs:
            return []

        vectors = await asyncio.to_thread(self._request, inputs)
        return vectors[0] if single else vectors

    def _request(self, inputs: list) -> list:
        """POST to /api/embed and return one vector per input."""
        response = requests.post(
            f"{self.base_url}/api/embed",
            json={"model": self.model, "input": inputs},
            timeout=self.timeout,
        )
        response.raise_for_status()

        vectors = response.json().get("embeddings") or []
        if len(vectors) != len(inputs):
            raise EnhancementError(
                f"Embedding model returned {len(vectors)} vectors for {len(inputs)} inputs"
            )
        return vectors
