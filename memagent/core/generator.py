"""
Memory Agent Generation Service
================================
Sends assembled chat messages to Ollama and returns the reply.

Two modes:
  stream(messages)    async iterator of text chunks (NDJSON from /api/chat)
  complete(messages)  one complete text, non-streaming fallback

Ollama's REST API is called with requests; blocking calls run in worker
threads so the event loop keeps serving other sessions while a model thinks.
"""

import asyncio
import json
import time

import requests

from memagent.core.errors import GenerationError
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("core.generator")


def extract_delta(data: dict) -> str:
    """
    Pull the text delta out of one streamed JSON object.

    Understands Ollama chat chunks ({"message": {"content": ...}}), Ollama
    generate chunks ({"response": ...}) and OpenAI-style chunks
    ({"choices": [{"delta": {"content": ...}}]}).
    """
    message = data.get("message")
    if isinstance(message, dict) and message.get("content"):
        return message["content"]

    if data.get("response"):
        return data["response"]

    choices = data.get("choices")
    if choices:
        choice = choices[0]
        delta = choice.get("delta") or choice.get("message") or {}
        if delta.get("content"):
            return delta["content"]
        if choice.get("text"):
            return choice["text"]

    return ""


class GenerationService:
    """
    Streams or completes chat requests against an Ollama model.
    """

    def __init__(self, config: dict = None):
        config = config or load_config()
        gen_cfg = config["generation"]

        self.base_url: str = gen_cfg["base_url"].rstrip("/")
        self.model: str = gen_cfg["model"]
        self.temperature: float = gen_cfg.get("temperature", 0.7)
        self.max_tokens: int = gen_cfg.get("max_tokens", 512)
        self.context_window: int = gen_cfg.get("context_window", 4096)
        self.request_timeout: float = gen_cfg.get("request_timeout", 120)

        logger.info(
            f"Generator: Ollama @ {self.base_url}, "
            f"model={self.model}, ctx={self.context_window}"
        )

    def is_available(self) -> bool:
        """Check if the Ollama server is reachable."""
        try:
            resp = requests.get(f"{self.base_url}/api/tags", timeout=3)
            return resp.status_code == 200
        except requests.RequestException:
            return False

    def _payload(self, messages: list, stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "options": {
                "num_ctx": self.context_window,
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

    # ──────────────────────────────────────────────────────────
    # Streaming
    # ──────────────────────────────────────────────────────────

    async def stream(self, messages: list):
        """
        Stream the reply chunk by chunk.

        Yields:
            Non-empty text chunks in arrival order.

        Raises:
            GenerationError: On transport errors or an error reported by Ollama.
        """
        payload = self._payload(messages, stream=True)

        try:
            response = await asyncio.to_thread(
                requests.post,
                f"{self.base_url}/api/chat",
                json=payload,
                stream=True,
                timeout=self.request_timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise GenerationError(f"Ollama request failed: {e}") from e

        response.encoding = "utf-8"
        lines = response.iter_lines(decode_unicode=True)

        try:
            while True:
                try:
                    line = await asyncio.to_thread(next, lines, None)
                except requests.RequestException as e:
                    raise GenerationError(f"Ollama stream broke: {e}") from e

                if line is None:
                    break
                if not line:
                    continue
                if line.startswith("data: "):
                    line = line[6:]
                if line.strip() == "[DONE]":
                    break

                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping non-JSON stream line: {line[:80]}")
                    continue

                if data.get("error"):
                    raise GenerationError(f"Ollama error: {data['error']}")

                delta = extract_delta(data)
                if delta:
                    yield delta

                if data.get("done"):
                    break
        finally:
            response.close()

    # ──────────────────────────────────────────────────────────
    # Non-streaming fallback
    # ──────────────────────────────────────────────────────────

    async def complete(self, messages: list) -> str:
        """Generate the whole reply in one request."""
        return await asyncio.to_thread(self._call_ollama, self._payload(messages, stream=False))

    def _call_ollama(self, payload: dict) -> str:
        """Make a request to Ollama's chat API. Retries once."""
        for attempt in range(2):
            try:
                response = requests.post(
                    f"{self.base_url}/api/chat",
                    json=payload,
                    timeout=self.request_timeout,
                )
                response.raise_for_status()

                return extract_delta(response.json()).strip()

            except requests.RequestException as e:
                if attempt == 0:
                    logger.warning(f"Ollama request failed: {e}. Retrying in 1s...")
                    time.sleep(1)
                else:
                    raise GenerationError(f"Ollama request failed: {e}") from e
