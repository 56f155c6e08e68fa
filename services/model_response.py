"""
Parsing of free-form model text into JSON.

Vision models wrap their JSON in prose or markdown fences. The payload is
located by bracket matching: first the widest span from the first opening
bracket to the last closing one, then the first balanced span if the wide
one does not parse.
"""

import json
import re
from typing import Any

from shared.errors import ModelResponseError

NO_RESPONSE_ERROR = "No response from AI"
PARSE_ERROR = "Failed to parse AI response"

_PATTERNS = {
    "array": (re.compile(r"\[[\s\S]*\]"), "[", "]", list),
    "object": (re.compile(r"\{[\s\S]*\}"), "{", "}", dict),
}


def _balanced_span(text: str, opening: str, closing: str) -> str | None:
    start = text.find(opening)
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_model_response(text: str | None, kind: str = "array") -> Any:
    """
    Extract the JSON array or object embedded in model output.

    Args:
        text: Raw model text, possibly None or empty
        kind: "array" or "object"

    Returns:
        The decoded list or dict

    Raises:
        ModelResponseError: When there is no text or no parseable JSON of
            the requested kind
    """
    if kind not in _PATTERNS:
        raise ValueError(f"Unsupported response kind: {kind}")
    if not text or not text.strip():
        raise ModelResponseError(NO_RESPONSE_ERROR)

    pattern, opening, closing, expected_type = _PATTERNS[kind]
    candidates = []
    match = pattern.search(text)
    if match:
        candidates.append(match.group(0))
    balanced = _balanced_span(text, opening, closing)
    if balanced and balanced not in candidates:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expected_type):
            return value

    raise ModelResponseError(PARSE_ERROR)
