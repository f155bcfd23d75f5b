from __future__ import annotations

import json
import re
from typing import List, Optional

_CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_ZERO_WIDTH_RE = re.compile(r"[\u200b\u200c\u200d\u2060\ufeff]")
_TRAILING_COMMA_RE = re.compile(r",\s*(\]|\})")

_CLOSERS = {"{": "}", "[": "]"}


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def strip_noise(text: str) -> str:
    """Drop code fences and zero-width characters, then trim."""

    return _ZERO_WIDTH_RE.sub("", _CODE_FENCE_RE.sub("", text or "")).strip()


def clean_model_text(text: str) -> str:
    """Isolate the object body: first ``{`` through last ``}`` once noise is stripped."""

    cleaned = strip_noise(text)
    start = cleaned.find("{")
    if start == -1:
        return cleaned
    end = cleaned.rfind("}")
    if end > start:
        return cleaned[start : end + 1]
    # Still streaming: no closing brace yet.
    return cleaned[start:]


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _scan(text: str) -> tuple[List[str], bool, int]:
    """Return (pending closers, inside-string flag, last safe cut index).

    The safe cut index sits just before the last member separator or just
    after the last opened/closed container, so truncating there never leaves a
    dangling key.
    """

    stack: List[str] = []
    in_string = False
    escaped = False
    safe_cut = 0
    for idx, char in enumerate(text):
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
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
            safe_cut = idx + 1
        elif char in "}]":
            if stack and stack[-1] == char:
                stack.pop()
            safe_cut = idx + 1
        elif char == ",":
            safe_cut = idx
    return stack, in_string, safe_cut


def close_truncated_json(text: str) -> str:
    """Close an object whose stream was cut off mid-way.

    Open strings and containers are closed in place first. If that still does
    not parse, the text is cut back to the last complete member and the
    remaining containers are closed.
    """

    stack, in_string, safe_cut = _scan(text)
    if not stack and not in_string:
        return text

    body = text + '"' if in_string else text
    candidate = strip_trailing_commas(body + "".join(reversed(stack)))
    if _is_valid_json(candidate):
        return candidate

    truncated = text[:safe_cut].rstrip().rstrip(",")
    remaining, _, _ = _scan(truncated)
    return strip_trailing_commas(truncated + "".join(reversed(remaining)))


def repair_structured_json(text: Optional[str]) -> str:
    """Best-effort repair of a model's JSON object output.

    Never raises; if nothing parses, the cleaned text is returned so partial
    parsing further downstream can keep going.
    """

    cleaned = clean_model_text(text or "")
    if not cleaned:
        return cleaned
    if _is_valid_json(cleaned):
        return cleaned

    without_commas = strip_trailing_commas(cleaned)
    if _is_valid_json(without_commas):
        return without_commas

    closed = close_truncated_json(without_commas.rstrip())
    if _is_valid_json(closed):
        return closed
    return cleaned
