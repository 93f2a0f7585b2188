# src/wizard_tasks/tasks/response_parser.py

"""
Extract one JSON object from model output.

Model replies often wrap the object in prose or markdown, and are sometimes cut
off by a length limit. The structural checks run before json.loads so callers can
tell a truncated reply (retry with a shorter prompt) from invalid JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any, TypeVar

from ..errors import MalformedJSON, ResponseParseError, TruncatedString, UnbalancedBraces

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _candidate(text: str) -> str | None:
    first = text.find("{")
    if first == -1:
        return None
    last = text.rfind("}")
    if last < first:
        # No closing brace after the opening one: keep the tail so the scan sees it.
        return text[first:]
    return text[first : last + 1]


def _scan(candidate: str) -> tuple[bool, int, int]:
    """Return (in_string, brace_depth, bracket_depth) at the end of the candidate."""
    in_string = False
    escaped = False
    braces = 0
    brackets = 0

    for ch in candidate:
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            braces += 1
        elif ch == "}":
            braces -= 1
        elif ch == "[":
            brackets += 1
        elif ch == "]":
            brackets -= 1

    return in_string, braces, brackets


def extract_json(text: str) -> dict[str, Any]:
    """
    Parse the JSON object embedded in text.

    Raises:
        TruncatedString: the text ends inside a string literal.
        UnbalancedBraces: braces/brackets do not close.
        MalformedJSON: anything else json.loads rejects (or no object at all).
    """
    candidate = _candidate(text or "")
    if candidate is None:
        raise MalformedJSON("No JSON object found in response")

    in_string, braces, brackets = _scan(candidate)

    if in_string:
        logger.debug("Response parser: unterminated string (len=%d)", len(candidate))
        raise TruncatedString(
            "Response ends inside a JSON string; it was likely truncated by a length limit"
        )

    if braces != 0 or brackets != 0:
        logger.debug("Response parser: unbalanced braces=%d brackets=%d", braces, brackets)
        raise UnbalancedBraces(
            f"Unbalanced JSON (braces={braces}, brackets={brackets}); the response was likely truncated"
        )

    try:
        value = json.loads(candidate)
    except ValueError as e:
        raise MalformedJSON(f"Invalid JSON in response: {e}") from e

    if not isinstance(value, dict):
        raise MalformedJSON("Response JSON is not an object")
    return value


def parse_json_with_fallback(text: str, fallback: T) -> dict[str, Any] | T:
    try:
        return extract_json(text)
    except ResponseParseError as e:
        logger.warning("Response parser: using fallback value (%s)", e)
        return fallback
