from __future__ import annotations

import re
from typing import Optional

from ...constants import FINGERPRINT_DESCRIPTION_CHARS, FINGERPRINT_MIN_DESCRIPTION_CHARS

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value.lower()).strip()


def build_job_fingerprint(
    title: Optional[str],
    company: Optional[str],
    description: Optional[str] = None,
    location: Optional[str] = None,
) -> str:
    """Content identity for a posting: ``title|company|description-prefix``.

    Descriptions too short to be meaningful fall back to the location. The
    prefix cut happens after normalization so whitespace differences cannot
    shift the boundary.
    """

    normalized_description = normalize_text(description)
    if len(normalized_description) > FINGERPRINT_MIN_DESCRIPTION_CHARS:
        tail = normalized_description[:FINGERPRINT_DESCRIPTION_CHARS].rstrip()
    else:
        tail = normalize_text(location)
    return f"{normalize_text(title)}|{normalize_text(company)}|{tail}"
