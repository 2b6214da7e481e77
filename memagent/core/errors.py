"""
Memory Agent Error Taxonomy
============================
Every failure the conversation pipeline can see falls into one of four kinds:

  InputError        malformed client message; reported, turn discarded
  PersistenceError  store unavailable; fatal for user-turn writes,
                    retried then logged for assistant-turn writes
  EnhancementError  retrieval / embedding / indexing; logged only
  GenerationError   inference failure; masked behind the degraded message

`client_message` is the text sent in an `error` event when the kind
surfaces to the client.
"""


class MemAgentError(Exception):
    """Base class for all Memory Agent errors."""

    client_message = "Failed to process message"


class InputError(MemAgentError):
    """Malformed or unusable client message."""


class PersistenceError(MemAgentError):
    """Conversation store read/write failure."""

    client_message = "Failed to store message"


class EnhancementError(MemAgentError):
    """Memory retrieval, embedding or indexing failure."""


class GenerationError(MemAgentError):
    """The generation backend failed or returned nothing usable."""
