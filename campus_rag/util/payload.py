"""
Extract structured payloads from free-text model output.

Classifier and generator responses sometimes wrap JSON in markdown fences or
surround it with prose. extract_payload() is the single place that digs the
JSON out; when nothing parses it returns None and the caller treats the
response as plain text.
"""

import json
import re
from typing import Any, Optional, Union

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)


def strip_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text itself when unfenced."""
    if not text:
        return ""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def first_line(text: str) -> str:
    """Return the first non-empty line of text, stripped."""
    for line in (text or "").splitlines():
        line = line.strip()
        if line:
            return line
    return ""


def _balanced_span(text: str, start: int) -> Optional[str]:
    """Return the balanced {...} or [...] span starting at index start."""
    opener = text[start]
    closer = "}" if opener == "{" else "]"
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
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_payload(text: str) -> Optional[Union[dict, list]]:
    """
    Extract a JSON object or array from free text.

    Tries, in order: the fenced or raw text as a whole, then every balanced
    {...} / [...] span from left to right. Scalars are not payloads.

    Returns:
        The parsed dict or list, or None when nothing parses.
    """
    if not text or not text.strip():
        return None

    body = strip_fences(text)
    try:
        parsed = json.loads(body)
        if isinstance(parsed, (dict, list)):
            return parsed
    except ValueError:
        pass

    for i, ch in enumerate(body):
        if ch not in "{[":
            continue
        span = _balanced_span(body, i)
        if span is None:
            continue
        try:
            parsed = json.loads(span)
        except ValueError:
            continue
        if isinstance(parsed, (dict, list)):
            return parsed

    return None


def payload_field(text: str, field: str, default: Any = None) -> Any:
    """Return field from the extracted JSON object, or default."""
    payload = extract_payload(text)
    if isinstance(payload, dict):
        return payload.get(field, default)
    return default
