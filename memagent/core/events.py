"""
Memory Agent Wire Events
=========================
JSON frames exchanged over a session's WebSocket.

Client -> server:
    {"type": "chat", "content": "..."}        anything else is ignored

Server -> client:
    {"type": "connected", "userId", "sessionId", "message"}
    {"type": "stream", "content"}             zero or more per turn
    {"type": "complete", "messageCount"}      once per finished turn
    {"type": "error", "message"}

Also keeps process-wide counters for the /stats endpoint. Counters are only
touched from the event loop thread.
"""

import json
import time

from memagent.core.errors import InputError

CHAT = "chat"
CONNECTED_MESSAGE = "Connected to Memory Agent"

# Cumulative state reported by /stats
_state = {
    "uptime_start": time.time(),
    "active_sessions": 0,
    "sessions_opened": 0,
    "turns_completed": 0,
    "errors_sent": 0,
}


def connected(user_id: str, session_id: str) -> dict:
    return {
        "type": "connected",
        "userId": user_id,
        "sessionId": session_id,
        "message": CONNECTED_MESSAGE,
    }


def stream(content: str) -> dict:
    return {"type": "stream", "content": content}


def complete(message_count: int) -> dict:
    return {"type": "complete", "messageCount": message_count}


def error(message: str) -> dict:
    return {"type": "error", "message": message}


def parse_client_message(raw) -> dict:
    """
    Decode one client frame.

    Args:
        raw: Text or bytes frame.

    Returns:
        The decoded JSON object.

    Raises:
        InputError: If the frame is not a JSON object, or is a chat message
                    without non-empty string content.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputError("Message is not valid UTF-8") from e

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InputError(f"Message is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InputError("Message must be a JSON object")

    if data.get("type") == CHAT:
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise InputError("Chat message needs non-empty string content")

    return data


def track(event: dict) -> None:
    """Update counters for an event sent to a client."""
    kind = event.get("type")
    if kind == "complete":
        _state["turns_completed"] += 1
    elif kind == "error":
        _state["errors_sent"] += 1


def session_opened() -> None:
    _state["sessions_opened"] += 1
    _state["active_sessions"] += 1


def session_closed() -> None:
    _state["active_sessions"] -= 1


def get_state() -> dict:
    """Get current cumulative state."""
    return {
        **_state,
        "uptime": int(time.time() - _state["uptime_start"]),
    }
