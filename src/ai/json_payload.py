"""Locate and parse the JSON payload inside a model response."""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _balanced_end(text: str, start: int) -> Optional[int]:
    """
    Index one past the bracket that closes ``text[start]``.

    Brackets inside string literals (including escaped quotes) are ignored.
    Returns None if the structure never closes or closes with the wrong
    bracket.
    """
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False

    for i in range(start + 1, len(text)):
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if ch != stack.pop():
                return None
            if not stack:
                return i + 1
    return None


def extract_json_payload(text: Optional[str]) -> Optional[Any]:
    """
    Parse the JSON payload in a model response.

    Code fences are stripped, then the text is scanned for top-level
    balanced '{...}' or '[...]' structures that parse. Nested structures
    are not candidates on their own, and the longest parsed structure
    wins, so a stray "[1]" in prose does not hide the real object. Prose
    before the payload and trailing noise after it are ignored.

    Args:
        text: Raw model output

    Returns:
        Parsed JSON value, or None if no valid payload was found
    """
    if not text:
        return None

    body = strip_code_fences(text)
    best = None
    best_length = 0
    start = 0
    while start < len(body):
        if body[start] not in _CLOSERS:
            start += 1
            continue
        end = _balanced_end(body, start)
        if end is None:
            start += 1
            continue
        try:
            value = json.loads(body[start:end])
        except json.JSONDecodeError as e:
            logger.debug(f"Candidate JSON at offset {start} did not parse: {e}")
            start += 1
            continue
        if end - start > best_length:
            best, best_length = value, end - start
        start = end

    if best_length:
        return best

    logger.warning(f"No JSON payload found in response: {text[:200]}")
    return None
