"""Context trimming for executor conversations."""

from __future__ import annotations

from typing import Any

_TRUNCATED_MARKER = "[TRUNCATED]"
_ERROR_MARKERS = ("Traceback", "Error:", "error:", "timed out")


def _length(message: dict[str, Any]) -> int:
    return len(str(message.get("content") or ""))


def truncate_content(content: str, max_chars: int) -> str:
    """Clip one message, keeping the tail when it looks like an error report."""
    if len(content) <= max_chars:
        return content
    keep = max(0, max_chars - len(_TRUNCATED_MARKER))
    if any(marker in content for marker in _ERROR_MARKERS):
        return f"{_TRUNCATED_MARKER}{content[-keep:]}" if keep else _TRUNCATED_MARKER
    return f"{content[:keep]}{_TRUNCATED_MARKER}"


def trim_messages(
    messages: list[dict[str, Any]],
    max_chars: int,
    keep_head: int = 2,
    max_single_message_chars: int = 8000,
) -> list[dict[str, Any]]:
    """Drop the oldest turns after the framing messages until under ``max_chars``.

    The first ``keep_head`` messages (system prompt and task framing) and the
    most recent message are never dropped.
    """
    if not messages:
        return []
    trimmed = [dict(message) for message in messages]
    for message in trimmed:
        content = message.get("content")
        if isinstance(content, str):
            message["content"] = truncate_content(content, max_single_message_chars)

    head = trimmed[:keep_head]
    tail = trimmed[keep_head:]
    while len(tail) > 1 and sum(_length(item) for item in head + tail) > max(1, max_chars):
        tail.pop(0)
    return head + tail
