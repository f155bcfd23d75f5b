from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit

JOB_ID_PARAM = "currentJobId"
LINKEDIN_ROOT_DOMAIN = "linkedin.com"

_JOB_VIEW_RE = re.compile(r"/jobs/view/(?:[A-Za-z0-9\-]+-)?(\d+)(?:/|$)")
_DIGITS_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ParsedLinkedInJob:
    job_id: str
    original_url: str
    canonical_url: str


def _strip_trailing_slash(path: str) -> str:
    trimmed = path.rstrip("/")
    return trimmed or "/"


def _job_id_from_query(query: str) -> Optional[str]:
    if not query:
        return None
    values = parse_qs(query, keep_blank_values=False).get(JOB_ID_PARAM)
    if not values:
        return None
    value = values[0].strip()
    return value or None


def _with_job_id(base: str, job_id: Optional[str]) -> str:
    if job_id:
        return f"{base}?{JOB_ID_PARAM}={quote(job_id, safe='')}"
    return base


def _fallback_normalize(url: str) -> str:
    before_hash = url.split("#", 1)[0]
    path_part, _, query = before_hash.partition("?")
    return _with_job_id(_strip_trailing_slash(path_part) if path_part else path_part, _job_id_from_query(query))


def normalize_job_url(url: Optional[str]) -> str:
    """Canonical lookup key for a posting URL.

    Scheme, host and path are kept; query and fragment are dropped except for
    ``currentJobId``. Trailing slashes are stripped. An empty string means the
    job has no usable URL identity.
    """

    if not url:
        return ""
    raw = url.strip()
    if not raw:
        return ""

    try:
        parts = urlsplit(raw)
    except ValueError:
        return _fallback_normalize(raw)
    if not parts.scheme or not parts.netloc:
        return _fallback_normalize(raw)

    base = f"{parts.scheme.lower()}://{parts.netloc.lower()}{_strip_trailing_slash(parts.path)}"
    return _with_job_id(base, _job_id_from_query(parts.query))


def _is_linkedin_host(hostname: str) -> bool:
    lower = hostname.lower()
    return lower == LINKEDIN_ROOT_DOMAIN or lower.endswith(f".{LINKEDIN_ROOT_DOMAIN}")


def parse_linkedin_job_url(url: Optional[str]) -> Optional[ParsedLinkedInJob]:
    """Extract the LinkedIn job id from a view or search URL, if any."""

    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname or not _is_linkedin_host(parts.hostname):
        return None

    canonical = normalize_job_url(url)
    match = _JOB_VIEW_RE.search(parts.path)
    if match:
        return ParsedLinkedInJob(job_id=match.group(1), original_url=url, canonical_url=canonical)

    job_id = _job_id_from_query(parts.query)
    if job_id and _DIGITS_RE.match(job_id):
        return ParsedLinkedInJob(job_id=job_id, original_url=url, canonical_url=canonical)
    return None
