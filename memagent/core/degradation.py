"""
Memory Agent Degradation Policy
================================
The one place that decides what happens when a collaborator call fails
or times out:

  Call                        On failure                    Client sees
  ─────────────────────────── ───────────────────────────── ───────────────
  schema initialization       log and continue              nothing
  user-turn persistence       abort pipeline                error event
  history read                empty history                 nothing
  memory retrieval            empty memories                nothing
  generation stream           fixed degraded message        stream content
  assistant-turn persistence  retry once, log, continue     nothing
  memory embed/upsert         log and continue              nothing

Every call is bounded by a per-call timeout from `degradation.timeouts`, except
turn writes: a write that outlives its timeout may still commit (aiosqlite
runs it in a worker thread), so it is awaited until it succeeds or fails and
the timeout only logs a warning. SQLite's busy timeout bounds how long that is.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from memagent.core.errors import (
    EnhancementError,
    GenerationError,
    MemAgentError,
    PersistenceError,
)
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("core.degradation")

DEFAULT_DEGRADED_MESSAGE = (
    "I'm having trouble connecting to the AI model right now. "
    "Please try again in a moment."
)


class Call(str, Enum):
    SCHEMA_INIT = "schema_init"
    USER_TURN_WRITE = "user_turn_write"
    HISTORY_READ = "history_read"
    MEMORY_RETRIEVAL = "memory_retrieval"
    GENERATION = "generation"
    ASSISTANT_TURN_WRITE = "assistant_turn_write"
    MEMORY_INDEX = "memory_index"


class Action(Enum):
    ABORT = "abort"
    FALLBACK = "fallback"
    SUBSTITUTE = "substitute"


@dataclass(frozen=True)
class Rule:
    action: Action
    error: type
    retries: int = 0
    default_timeout: float = 10.0
    # Writes that may still commit after a timeout are awaited, never abandoned
    settle: bool = False


POLICY_TABLE = {
    Call.SCHEMA_INIT: Rule(Action.FALLBACK, PersistenceError),
    Call.USER_TURN_WRITE: Rule(Action.ABORT, PersistenceError, settle=True),
    Call.HISTORY_READ: Rule(Action.FALLBACK, EnhancementError, default_timeout=5.0),
    Call.MEMORY_RETRIEVAL: Rule(Action.FALLBACK, EnhancementError, default_timeout=5.0),
    Call.GENERATION: Rule(Action.SUBSTITUTE, GenerationError, default_timeout=120.0),
    Call.ASSISTANT_TURN_WRITE: Rule(Action.FALLBACK, PersistenceError, retries=1, settle=True),
    Call.MEMORY_INDEX: Rule(Action.FALLBACK, EnhancementError, default_timeout=30.0),
}


class DegradationPolicy:
    """
    Runs collaborator calls under the policy table.
    """

    def __init__(self, config: dict = None):
        config = config or load_config()
        deg_cfg = config.get("degradation") or {}

        self.degraded_message: str = deg_cfg.get("degraded_message", DEFAULT_DEGRADED_MESSAGE)
        self._timeouts: dict = deg_cfg.get("timeouts") or {}

    def timeout_for(self, call: Call) -> float:
        return float(self._timeouts.get(call.value, POLICY_TABLE[call].default_timeout))

    async def run(self, call: Call, factory, fallback=None):
        """
        Await `factory()` under the rule for `call`.

        Args:
            call: Which collaborator call this is.
            factory: Zero-argument callable returning a fresh awaitable;
                     called again for each retry.
            fallback: Value returned when a FALLBACK rule absorbs the failure.

        Returns:
            The call's result, or `fallback`.

        Raises:
            MemAgentError subclass: when the rule's action is ABORT.
        """
        rule = POLICY_TABLE[call]
        timeout = self.timeout_for(call)
        attempts = rule.retries + 1
        last_error = None

        for attempt in range(1, attempts + 1):
            try:
                if rule.settle:
                    return await self._settle(call, factory(), timeout)
                return await asyncio.wait_for(factory(), timeout=timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                reason = f"timed out after {timeout:g}s"
            except Exception as e:
                last_error = e
                reason = f"{type(e).__name__}: {e}"

            if attempt < attempts:
                logger.warning(f"⚠️ {call.value} failed ({reason}); retry {attempt}/{rule.retries}")

        error = self._classify(rule, call, last_error)

        if rule.action is Action.ABORT:
            logger.error(f"❌ {call.value} failed, aborting turn: {error}")
            if error is last_error:
                raise error
            raise error from last_error

        logger.warning(f"⚠️ {call.value} failed, continuing without it: {error}")
        return fallback

    async def _settle(self, call: Call, awaitable, timeout: float):
        task = asyncio.ensure_future(awaitable)
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning(f"⏳ {call.value} still running after {timeout:g}s; waiting for it to finish")
        return await task

    def substitute(self, call: Call, exc: BaseException) -> str:
        """Log a generation failure and return the text that replaces it."""
        rule = POLICY_TABLE[call]
        error = self._classify(rule, call, exc)
        logger.warning(f"⚠️ {call.value} failed, sending degraded reply: {error}")
        return self.degraded_message

    @staticmethod
    def _classify(rule: Rule, call: Call, exc: BaseException) -> MemAgentError:
        if isinstance(exc, rule.error):
            return exc
        if isinstance(exc, asyncio.TimeoutError):
            return rule.error(f"{call.value} timed out")
        return rule.error(f"{call.value} failed: {type(exc).__name__}: {exc}")
