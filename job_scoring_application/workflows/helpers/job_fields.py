from __future__ import annotations

import html
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ...constants import MAX_JOB_TEXT_CHARS
from .url_normalizer import normalize_job_url, parse_linkedin_job_url

# Candidate keys per semantic field, tried in order; the first non-empty value wins.
FIELD_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "url": ("url", "jobUrl", "link", "href", "jobLink", "viewJobUrl"),
    "title": ("title", "jobTitle", "positionTitle", "position", "name"),
    "company": ("company", "companyName", "employer", "organization", "companyTitle"),
    "location": ("location", "jobLocation", "workLocation", "address", "city", "place"),
    "description": (
        "descriptionText",
        "description",
        "descriptionHtml",
        "jobDescription",
        "details",
        "summary",
        "content",
    ),
    "applyUrl": ("applyUrl", "applicationUrl", "applyLink", "applicationLink"),
    "salary": ("salary", "salaryRange", "compensationRange", "pay", "wage"),
    "employmentType": ("employmentType", "jobType", "workType", "type", "schedule"),
    "experienceLevel": ("experienceLevel", "seniorityLevel", "level", "experience", "jobLevel"),
    "industry": ("industry", "sector", "field", "domain"),
    "companySize": ("companySize", "numberOfEmployees", "employees", "size"),
    "postedDate": ("postedDate", "datePosted", "publishedDate", "createdAt", "posted", "date"),
}

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_COMPANY = "Unknown Company"

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_SALARY_IN_TEXT_RE = re.compile(
    r"\$[\d,]+(?:\s*-\s*\$?[\d,]+)?(?:\s*(?:per|/)\s*(?:year|month|hour|yr|mo|hr))?",
    re.IGNORECASE,
)


def clean_job_text(value: Any) -> Optional[str]:
    """Strip markup, unescape entities and collapse whitespace; None when empty."""

    if not isinstance(value, str) or not value:
        return None
    cleaned = _TAG_RE.sub(" ", value)
    cleaned = html.unescape(cleaned).replace("\xa0", " ")
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if not cleaned:
        return None
    return cleaned[:MAX_JOB_TEXT_CHARS]


def extract_job_field(raw: Mapping[str, Any], field: str, default: Any = None) -> Any:
    for key in FIELD_SYNONYMS[field]:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return default


def _extract_salary(raw: Mapping[str, Any]) -> Optional[str]:
    value = extract_job_field(raw, "salary")
    if value:
        return clean_job_text(value if isinstance(value, str) else str(value))
    description = raw.get("description")
    if isinstance(description, str):
        match = _SALARY_IN_TEXT_RE.search(description)
        if match:
            return match.group(0)
    return None


def build_job_document(raw: Mapping[str, Any], scrape_id: str, user_id: str) -> Dict[str, Any]:
    """Map a free-form scraped posting onto the stored job shape."""

    url_value = extract_job_field(raw, "url", "")
    url = url_value if isinstance(url_value, str) else str(url_value)
    linkedin = parse_linkedin_job_url(url)
    canonical = linkedin.canonical_url if linkedin else (normalize_job_url(url) or None)

    document: Dict[str, Any] = {
        "scrapeId": scrape_id,
        "userId": user_id,
        "url": url,
        "title": clean_job_text(extract_job_field(raw, "title")) or UNKNOWN_TITLE,
        "company": clean_job_text(extract_job_field(raw, "company")) or UNKNOWN_COMPANY,
        "applyUrl": extract_job_field(raw, "applyUrl") or (url or None),
        "salary": _extract_salary(raw),
        "linkedinJobId": linkedin.job_id if linkedin else None,
        "linkedinCanonicalUrl": canonical,
    }
    for field in ("location", "description", "companySize", "postedDate"):
        document[field] = clean_job_text(extract_job_field(raw, field))
    for field in ("employmentType", "experienceLevel", "industry"):
        document[field] = extract_job_field(raw, field)
    return {key: value for key, value in document.items() if value is not None}


def prepare_jobs_batch(
    raw_jobs: Iterable[Mapping[str, Any]],
    scrape_id: str,
    user_id: str,
    existing_urls: Sequence[str] = (),
) -> Tuple[List[Dict[str, Any]], int]:
    """Build insertable documents, skipping URL-less and already-known postings.

    Returns ``(documents, skipped_count)``. Known URLs and earlier postings in
    the same batch are compared by normalized URL.
    """

    seen: Set[str] = {normalized for normalized in map(normalize_job_url, existing_urls) if normalized}
    documents: List[Dict[str, Any]] = []
    skipped = 0
    for raw in raw_jobs:
        document = build_job_document(raw, scrape_id, user_id)
        normalized = normalize_job_url(document.get("url"))
        if not normalized or normalized in seen:
            skipped += 1
            continue
        seen.add(normalized)
        documents.append(document)
    return documents, skipped


def build_job_text(job: Mapping[str, Any]) -> str:
    """Plain-text rendering of a job handed to the scoring model."""

    def _field(key: str, fallback: str = "Not specified") -> str:
        value = job.get(key)
        return str(value) if value else fallback

    return "\n".join(
        [
            f"Job Title: {_field('title')}",
            f"Company: {_field('company')}",
            f"Location: {_field('location')}",
            f"Employment Type: {_field('employmentType')}",
            f"Experience Level: {_field('experienceLevel')}",
            f"Industry: {_field('industry')}",
            f"Salary: {_field('salary')}",
            f"Company Size: {_field('companySize')}",
            f"Posted Date: {_field('postedDate')}",
            "",
            "Job Description:",
            _field("description", "No description available"),
        ]
    )
