"""Lenient JSON parsing for model output."""

from __future__ import annotations

import ast
import json
import re
from typing import Any, Iterator

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_RE = re.compile(r"(?<!\\)'([^'\\]*(?:\\.[^'\\]*)*)'")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

# literal_eval raises TypeError on unhashable keys such as {[1]: 2}
_LITERAL_ERRORS = (ValueError, SyntaxError, TypeError, MemoryError, RecursionError)


class JsonRepairError(ValueError):
    """Raised when model output cannot be turned into JSON."""


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def _balanced_end(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return idx + 1
    return None


def _balanced_blocks(text: str) -> Iterator[str]:
    """Yield top-level balanced ``{...}`` / ``[...]`` spans, left to right.

    Prose often carries braces of its own ("step {1}"), so a block that fails
    to parse does not end the search.
    """
    idx = 0
    while idx < len(text):
        if text[idx] in "{[":
            end = _balanced_end(text, idx)
            if end is not None:
                yield text[idx:end]
                idx = end
                continue
        idx += 1


def _candidates(block: str) -> Iterator[str]:
    without_commas = _TRAILING_COMMA_RE.sub(r"\1", block)
    yield block
    yield without_commas
    straight = without_commas.translate(_SMART_QUOTES)
    if straight != without_commas:
        yield straight
    yield _SINGLE_QUOTED_RE.sub(r'"\1"', straight)


def _load_block(block: str) -> Any:
    for candidate in _candidates(block):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        try:
            # Python literals: True/False/None and single quotes.
            return ast.literal_eval(candidate)
        except _LITERAL_ERRORS:
            pass
    raise JsonRepairError("Failed to repair JSON")


def _payloads(text: str) -> Iterator[Any]:
    if not isinstance(text, str) or not text.strip():
        raise JsonRepairError("Empty model output")
    body = _strip_fences(text)
    found = False
    for block in _balanced_blocks(body):
        found = True
        try:
            yield _load_block(block)
        except JsonRepairError:
            continue
    if not found:
        raise JsonRepairError("No JSON object or array found")


def repair_json(text: str) -> Any:
    """Parse the first JSON value embedded in free text, fixing common model mistakes."""
    for payload in _payloads(text):
        return payload
    raise JsonRepairError("Failed to repair JSON")


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object in model output, skipping arrays and prose."""
    for payload in _payloads(text):
        if isinstance(payload, dict):
            return payload
    raise JsonRepairError("Expected a JSON object")
