"""Memory Agent: a per-user conversational memory coordinator."""

__version__ = "0.1.0"
