"""Locate the JSON object inside model text that may carry prose or code fences."""

from __future__ import annotations

import json
from typing import Any


def _balanced_end(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at start, or None if unbalanced.

    Braces inside string literals (including escaped quotes) do not count.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def find_json_span(text: str) -> str | None:
    """Return the first balanced {...} span of text, without decoding it."""
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            return text[start : end + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Decode the first balanced span that is a JSON object.

    Candidates are tried from each "{" in order, so prose such as
    "use {curly} carefully" ahead of the payload is skipped.

    Args:
        text: Raw model output.

    Returns:
        The decoded object, or None when no candidate decodes.
    """
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            try:
                value = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                value = None
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    return None
