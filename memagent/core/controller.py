"""
Memory Agent Conversation Controller
=====================================
Owns one session from open to close and runs its turns one at a time.

Turn pipeline (one chat message):
  1. Persist the user turn                   must succeed, else error event
  2. Recall relevant memories                best-effort
  3. Read recent history of this session     best-effort
  4. Assemble the prompt
  5. Stream the reply, forwarding each chunk as it arrives
  6. Persist the assistant turn              degraded message on failure
  7. Index both turns in the background      best-effort, not awaited
  8. Bump messageCount, send `complete`

Every frame the client sends goes through a FIFO queue drained by a single
worker task, so at most one pipeline runs per session and all SessionState
changes happen on that worker. Independent sessions share nothing but the
collaborator adapters.

Failure handling for each collaborator call lives in DegradationPolicy.
"""

import asyncio
import time
from uuid import uuid4

from memagent.core import events
from memagent.core.degradation import Call, DegradationPolicy
from memagent.core.errors import GenerationError, InputError, MemAgentError, PersistenceError
from memagent.core.prompt import PromptAssembler
from memagent.core.session import Preferences, SessionState
from memagent.memory.types import Role, Turn, utc_now
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("core.controller")

DEFAULT_USER_ID = "default-user"

# Queue sentinel that stops the worker
_STOP = object()


async def _single_chunk(awaitable):
    """Present a non-streaming reply as a one-chunk stream."""
    yield await awaitable


class ConversationController:
    """
    One instance per connection. `send` is an async callable that delivers
    one event dict to the client.
    """

    def __init__(self, send, store, memory, generator, assembler=None, policy=None, config: dict = None):
        config = config or load_config()
        conv_cfg = config.get("conversation") or {}

        self._send = send
        self.store = store
        self.memory = memory
        self.generator = generator
        self.assembler = assembler or PromptAssembler(config)
        self.policy = policy or DegradationPolicy(config)

        self.history_limit: int = conv_cfg.get("history_limit", 10)
        self.memory_top_k: int = (config.get("memory") or {}).get("top_k", 5)
        self.stream_responses: bool = (config.get("generation") or {}).get("stream", True)
        self.close_timeout: float = conv_cfg.get("close_timeout_seconds", 10)
        self.default_user_id: str = (config.get("server") or {}).get("default_user_id", DEFAULT_USER_ID)
        self.default_preferences = Preferences.from_config(conv_cfg.get("default_preferences"))

        self.instance_id = uuid4().hex[:8]
        self._state = None
        self._active = False
        self._closed = asyncio.Event()
        self._queue = asyncio.Queue()
        self._worker = None
        self._background = set()
        self._last_timestamp = None

        # Turn writes of the pipeline in flight, shielded from cancellation
        self._user_write = None
        self._reply_write = None
        self._unanswered = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    # ──────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────

    async def open(self, user_id: str = None) -> dict:
        """
        Start the session and greet the client.

        Args:
            user_id: Who is talking. Falls back to the configured sentinel.

        Returns:
            The `connected` event that was sent.
        """
        if self._state is not None:
            raise RuntimeError("Session already opened")

        user_id = user_id or self.default_user_id
        session_id = f"session-{time.monotonic_ns()}-{self.instance_id}"

        # Safe to repeat on every open; a failure surfaces on the first write
        await self.policy.run(Call.SCHEMA_INIT, self.store.initialize)

        self._state = SessionState(
            user_id=user_id,
            session_id=session_id,
            preferences=self.default_preferences,
        )
        self._active = True
        events.session_opened()
        self._worker = asyncio.create_task(self._drain(), name=f"pipeline-{session_id}")

        logger.info(f"🔌 Session {session_id} opened for {user_id}")
        payload = events.connected(user_id, session_id)
        await self._emit(payload)
        return payload

    async def handle_incoming(self, raw) -> None:
        """
        Accept one client frame. Frames are processed strictly in arrival order.
        """
        if not self._active:
            logger.warning("Dropping message received on a closed session")
            return
        await self._queue.put(raw)

    async def close(self, reason: str = "") -> None:
        """
        Stop accepting messages and let the in-flight turn finalize.

        Queued turns that have not started are dropped. A streaming reply is
        cut short; whatever was generated so far is still persisted. A turn
        still running after `close_timeout_seconds` is cancelled, but a stored
        user turn always ends up with exactly one assistant turn.
        """
        if not self._active:
            return
        self._active = False
        self._closed.set()

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.info(f"Dropped {dropped} queued message(s) on close")

        self._queue.put_nowait(_STOP)
        try:
            await asyncio.wait_for(asyncio.shield(self._worker), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Turn did not finish within {self.close_timeout}s of close; cancelling")
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            await self._answer_abandoned_turn()

        events.session_closed()
        logger.info(
            f"👋 Session {self._state.session_id} closed"
            f"{f' ({reason})' if reason else ''} after {self._state.message_count} exchanges"
        )

    async def wait_idle(self) -> None:
        """Wait until every queued frame and background index job is done."""
        await self._queue.join()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ──────────────────────────────────────────────────────────
    # Worker
    # ──────────────────────────────────────────────────────────

    async def _drain(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                if raw is _STOP:
                    return
                await self._dispatch(raw)
            except Exception as e:
                logger.error(f"Unexpected error in turn pipeline: {e}", exc_info=True)
                await self._answer_abandoned_turn()
                await self._emit(events.error(MemAgentError.client_message))
            finally:
                self._queue.task_done()

    async def _dispatch(self, raw) -> None:
        try:
            data = events.parse_client_message(raw)
        except InputError as e:
            logger.warning(f"Rejected client message: {e}")
            await self._emit(events.error(e.client_message))
            return

        if data.get("type") != events.CHAT:
            logger.debug(f"Ignoring message type {data.get('type')!r}")
            return

        await self._run_turn(data["content"])

    async def _run_turn(self, content: str) -> None:
        state = self._state

        # 1. The user turn must be durable before anything else happens
        user_turn = self._new_turn(Role.USER, content)
        self._reply_write = None
        self._unanswered = user_turn
        self._user_write = self._write_task(Call.USER_TURN_WRITE, user_turn)
        try:
            await asyncio.shield(self._user_write)
        except PersistenceError as e:
            self._unanswered = None
            await self._emit(events.error(e.client_message))
            return

        # 2. Memories
        memories = await self.policy.run(
            Call.MEMORY_RETRIEVAL,
            lambda: self.memory.recall(state.user_id, content, self.memory_top_k),
            fallback=[],
        )

        # 3. History (newest first from the store, one extra for the current turn)
        recent = await self.policy.run(
            Call.HISTORY_READ,
            lambda: self.store.query_recent(state.user_id, state.session_id, self.history_limit + 1),
            fallback=[],
        )
        history = self._chronological_history(recent, user_turn)

        # 4-5. Prompt and reply
        messages = self.assembler.build(state.preferences, memories, history, user_turn)
        reply = await self._generate(messages)

        # 6. Exactly one assistant turn per user turn, even when degraded
        assistant_turn = self._new_turn(Role.ASSISTANT, reply)
        self._reply_write = self._write_task(Call.ASSISTANT_TURN_WRITE, assistant_turn)
        await asyncio.shield(self._reply_write)
        self._unanswered = None

        # 7. Fire-and-forget indexing
        self._spawn(self._index([user_turn, assistant_turn]))

        # 8. Count the exchange
        self._state = state.record_exchange(assistant_turn.timestamp)
        logger.info(
            f"💬 Turn {self._state.message_count} done "
            f"({len(memories)} memories, {len(history)} history turns, {len(reply)} chars)"
        )
        await self._emit(events.complete(self._state.message_count))

    def _chronological_history(self, recent: list, current: Turn) -> list:
        if self.history_limit <= 0:
            return []
        history = [t for t in reversed(recent) if t.id != current.id]
        return history[-self.history_limit:]

    # ──────────────────────────────────────────────────────────
    # Generation
    # ──────────────────────────────────────────────────────────

    async def _generate(self, messages: list) -> str:
        """
        Produce the assistant reply, forwarding chunks as they arrive.

        Returns:
            Text to persist: the full reply, the partial reply when the
            session closed mid-stream, or the degraded message.
        """
        if self.stream_responses:
            chunks = self.generator.stream(messages)
        else:
            chunks = _single_chunk(self.generator.complete(messages))

        parts = []
        try:
            interrupted = await self._consume(chunks, parts)
            if interrupted:
                if parts:
                    logger.info("Session closed mid-reply; keeping partial response")
                    return "".join(parts)
                return self.policy.substitute(Call.GENERATION, GenerationError("session closed before any output"))
            if not "".join(parts).strip():
                raise GenerationError("model returned an empty reply")
        except Exception as e:
            degraded = self.policy.substitute(Call.GENERATION, e)
            await self._emit(events.stream(degraded))
            return degraded

        return "".join(parts)

    async def _consume(self, chunks, parts: list) -> bool:
        """
        Forward chunks until the stream ends, the session closes, or the
        generation deadline passes.

        Returns:
            True if the session closed before the stream ended.

        Raises:
            asyncio.TimeoutError: The generation deadline passed.
            Exception: Whatever the stream raised.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.policy.timeout_for(Call.GENERATION)
        iterator = chunks.__aiter__()
        closed = asyncio.ensure_future(self._closed.wait())

        try:
            while True:
                step = asyncio.ensure_future(iterator.__anext__())
                done, _ = await asyncio.wait(
                    {step, closed},
                    timeout=max(deadline - loop.time(), 0),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if step not in done:
                    step.cancel()
                    await asyncio.gather(step, return_exceptions=True)
                    if closed in done:
                        return True
                    raise asyncio.TimeoutError()

                try:
                    chunk = step.result()
                except StopAsyncIteration:
                    return False

                if chunk:
                    parts.append(chunk)
                    await self._emit(events.stream(chunk))
        finally:
            closed.cancel()
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    # ──────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────

    def _new_turn(self, role: Role, content: str) -> Turn:
        # Timestamps never go backwards within a session, even if the wall clock does
        now = utc_now()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now

        return Turn(
            id=uuid4().hex,
            user_id=self._state.user_id,
            session_id=self._state.session_id,
            timestamp=now,
            role=role,
            content=content,
        )

    def _write_task(self, call: Call, turn: Turn) -> asyncio.Task:
        return asyncio.ensure_future(self.policy.run(call, lambda: self.store.append(turn)))

    async def _answer_abandoned_turn(self) -> None:
        """
        Give a cancelled pipeline's user turn its assistant turn.

        Waits for whichever write was in flight. If the user turn was stored
        and no reply write had started, the degraded message is stored.
        """
        user_turn = self._unanswered
        if user_turn is None:
            return
        self._unanswered = None

        if self._reply_write is not None:
            await asyncio.shield(self._reply_write)
            return

        try:
            await asyncio.shield(self._user_write)
        except PersistenceError:
            return

        logger.warning(f"Turn {user_turn.id} was cut off before its reply; storing degraded reply")
        reply = self._new_turn(Role.ASSISTANT, self.policy.degraded_message)
        await self.policy.run(Call.ASSISTANT_TURN_WRITE, lambda: self.store.append(reply))

    async def _index(self, turns: list) -> None:
        await self.policy.run(Call.MEMORY_INDEX, lambda: self.memory.remember(turns))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _emit(self, event: dict) -> None:
        if self._closed.is_set():
            logger.debug(f"Session closed; not sending {event.get('type')} event")
            return
        try:
            await self._send(event)
        except Exception as e:
            logger.warning(f"Could not deliver {event.get('type')} event: {e}")
            return
        events.track(event)
