"""
Incoming message normalisation.

Clients send messages in more than one shape:
    {"role": "user", "content": "..."}            # flat (also "text" / "message")
    {"role": "user", "parts": [{"type": "text", "text": "..."}]}

Everything downstream only ever sees ChatMessage(role, content).
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Sequence

from app.errors import InvalidRequestError
from app.state import ChatMessage

logger = logging.getLogger(__name__)

_FLAT_FIELDS = ("content", "text", "message")


def extract_content(raw: Any) -> str:
    """Return the text carried by one raw message, or "" when there is none."""
    if not isinstance(raw, Mapping):
        return ""

    parts = raw.get("parts")
    if isinstance(parts, list):
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            text = part.get("text")
            if part.get("type") == "text" and isinstance(text, str) and text:
                return text
        # a parts array without a text fragment carries no usable content
        return ""

    value: Any = None
    for key in _FLAT_FIELDS:
        value = raw.get(key)
        if value:
            break
    return value if isinstance(value, str) else ""


def normalize_message(raw: Any) -> ChatMessage:
    role = raw.get("role") if isinstance(raw, Mapping) else None
    # anything that is not an assistant turn is treated as user input
    role = "assistant" if role == "assistant" else "user"
    return ChatMessage(role=role, content=extract_content(raw))


def normalize_messages(raw_messages: Sequence[Any]) -> List[ChatMessage]:
    return [normalize_message(m) for m in raw_messages]


def prepare_history(raw_messages: Any) -> List[ChatMessage]:
    """Validate the request's message list and return the history for generation.

    Raises InvalidRequestError when the list is missing/empty or the latest
    message has no usable text. Earlier messages without content are dropped.
    """
    if not isinstance(raw_messages, list) or not raw_messages:
        raise InvalidRequestError("Invalid or empty messages array")

    normalized = normalize_messages(raw_messages)
    latest = normalized[-1]
    if not latest.content.strip():
        raw_latest = raw_messages[-1]
        keys = sorted(raw_latest.keys()) if isinstance(raw_latest, Mapping) else []
        logger.info("rejecting request: latest message has no text (keys=%s)", keys)
        raise InvalidRequestError(
            "No valid message content found",
            details={"available_properties": keys},
        )

    history = [m for m in normalized[:-1] if m.content.strip()]
    dropped = len(normalized) - 1 - len(history)
    if dropped:
        logger.debug("dropped %d empty history message(s)", dropped)
    history.append(latest)
    return history
