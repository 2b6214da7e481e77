"""
Memory Agent Prompt Assembler
==============================
Builds the ordered message list sent to the generator:

    ┌──────────────────────────────────────────────────────┐
    │ system:  preamble                                    │
    │          Here are relevant memories from previous    │
    │          interactions:                               │
    │          likes jazz                                  │
    │          ...                                         │
    │          User preferences: {"topics": [...], ...}    │
    │          closing instruction                         │
    ├──────────────────────────────────────────────────────┤
    │ user / assistant history, oldest first               │
    ├──────────────────────────────────────────────────────┤
    │ user:    current message (exactly once, last)        │
    └──────────────────────────────────────────────────────┘

Memories keep the order retrieval ranked them in. History is never
reordered; a history entry that is the current turn is skipped so the
current message never appears twice.
"""

import json

from memagent.core.session import Preferences
from memagent.memory.types import Role, Turn
from memagent.utils.config import load_config

MEMORY_HEADER = "Here are relevant memories from previous interactions:"
TRUNCATION_MARKER = "[...memory truncated]"


def render_memories(memories: list, max_chars: int = None) -> str:
    """Memory block for the system prompt, empty if there are no memories."""
    if not memories:
        return ""

    block = MEMORY_HEADER + "\n" + "\n".join(m.text for m in memories)
    if max_chars and len(block) > max_chars:
        block = block[:max_chars] + "\n" + TRUNCATION_MARKER
    return block


def assemble_prompt(
    system_preamble: str,
    preferences: Preferences,
    memories: list,
    history: list,
    current: Turn,
    closing_instruction: str = "",
    max_memory_chars: int = None,
) -> list:
    """
    Build the generation request.

    Args:
        system_preamble: Opening text of the system entry.
        preferences: Session preferences, serialized into the system entry.
        memories: Recalled memories, relevance-ranked.
        history: Prior turns of this session in chronological order.
        current: The user turn being answered.
        closing_instruction: Optional last paragraph of the system entry.
        max_memory_chars: Budget for the rendered memory block.

    Returns:
        List of {"role", "content"} dicts.
    """
    sections = [system_preamble]

    memory_block = render_memories(memories, max_memory_chars)
    if memory_block:
        sections.append(memory_block)

    sections.append(f"User preferences: {json.dumps(preferences.to_dict())}")

    if closing_instruction:
        sections.append(closing_instruction)

    messages = [{"role": "system", "content": "\n\n".join(sections)}]
    messages.extend(turn.to_message() for turn in history if turn.id != current.id)
    messages.append({"role": Role.USER.value, "content": current.content})
    return messages


class PromptAssembler:
    """
    Binds the configured preamble and memory budget to assemble_prompt().
    """

    def __init__(self, config: dict = None):
        config = config or load_config()
        prompt_cfg = config["prompt"]

        self.system_preamble: str = prompt_cfg["system_preamble"]
        self.closing_instruction: str = prompt_cfg.get("closing_instruction", "")
        self.max_memory_chars: int = prompt_cfg.get("max_memory_chars")

    def build(self, preferences: Preferences, memories: list, history: list, current: Turn) -> list:
        return assemble_prompt(
            self.system_preamble,
            preferences,
            memories,
            history,
            current,
            closing_instruction=self.closing_instruction,
            max_memory_chars=self.max_memory_chars,
        )
