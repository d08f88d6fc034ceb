# src/a11yscan/extract.py
from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_GREEDY_ARRAY_RE = re.compile(r"\[.*\]", flags=re.DOTALL)


def _first_array_span(text: str) -> str | None:
    """
    Substring from the first '[' to the bracket that brings depth back to zero.
    Brackets inside JSON string literals are ignored. None if depth never returns to zero.
    """
    start = text.find("[")
    if start < 0:
        return None

    in_str = False
    esc = False
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue

        if ch == '"':
            in_str = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _parses_as_array(candidate: str | None) -> bool:
    if not candidate:
        return False
    try:
        return isinstance(json.loads(candidate), list)
    except (ValueError, RecursionError):
        return False


def extract_json_array(raw_text: str | None) -> str | None:
    """
    Recover the JSON array embedded in a model answer.

    1) first '[' .. matching ']' (depth scan)
    2) fallback: greedy outermost '[...]' span
    Returns the array text, or None when neither candidate parses. Never raises.
    """
    text = raw_text or ""
    if "[" not in text:
        return None

    candidate = _first_array_span(text)
    if _parses_as_array(candidate):
        return candidate

    m = _GREEDY_ARRAY_RE.search(text)
    if m and _parses_as_array(m.group(0)):
        return m.group(0)

    logger.debug("No parsable JSON array in model answer. First 400 chars:\n%s", text[:400])
    return None
