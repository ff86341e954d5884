"""
Tolerant JSON extraction from free-form oracle text.

Oracle replies wrap JSON in prose or markdown fences. The scanner walks the
text once, tracking bracket depth and skipping brackets inside JSON strings,
and returns the first balanced top-level group.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from pathways.core.errors import PathwayError

FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_PAIRS = {"[": "]", "{": "}"}


class JSONExtractionError(PathwayError, ValueError):
    """No parseable JSON value of the requested shape was found."""


def strip_code_fences(text: str) -> str:
    return FENCE_RE.sub("", text or "").strip()


def find_balanced_span(text: str, open_char: str, start: int = 0) -> Optional[Tuple[int, int]]:
    """
    Span (begin, end) of the first balanced group opened by open_char.

    Nested brackets of either kind are tracked on a stack; a mismatched
    closer abandons the current group and the scan restarts at the next
    opener. Returns None when no balanced group exists.
    """
    if open_char not in _PAIRS:
        raise ValueError(f"unsupported bracket: {open_char!r}")

    begin = text.find(open_char, start)
    while begin != -1:
        stack: List[str] = []
        in_string = False
        escaped = False
        for pos in range(begin, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char in _PAIRS:
                stack.append(_PAIRS[char])
            elif char in ("]", "}"):
                if not stack or stack.pop() != char:
                    break
                if not stack:
                    return begin, pos + 1
        begin = text.find(open_char, begin + 1)
    return None


def _extract(text: str, open_char: str, expected: type) -> Any:
    cleaned = strip_code_fences(text)
    start = 0
    while True:
        span = find_balanced_span(cleaned, open_char, start)
        if span is None:
            raise JSONExtractionError(f"no JSON {expected.__name__} found in oracle output")
        try:
            value = json.loads(cleaned[span[0]:span[1]])
        except json.JSONDecodeError:
            value = None
        if isinstance(value, expected):
            return value
        start = span[0] + 1


def extract_json_array(text: str) -> List[Any]:
    """First parseable JSON array in text; raises JSONExtractionError otherwise."""
    return _extract(text, "[", list)


def extract_json_object(text: str) -> Dict[str, Any]:
    """First parseable JSON object in text; raises JSONExtractionError otherwise."""
    return _extract(text, "{", dict)
