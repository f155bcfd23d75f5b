from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from ..components.models import JobRecord
from ..constants import COPIED_SCORE_MARKER
from ..services.store import ScoringStore
from .helpers.fingerprint import build_job_fingerprint
from .helpers.url_normalizer import normalize_job_url

logger = logging.getLogger("temporal.worker.dedup")

MatchKind = Literal["url", "fingerprint"]


@dataclass(frozen=True)
class DuplicateMatch:
    kind: MatchKind
    source: JobRecord


def _usable(candidate: JobRecord, job: JobRecord) -> bool:
    return candidate.id != job.id and candidate.ai_score is not None


class DuplicateMatcher:
    """Finds an already-scored equivalent of a job among the same user's jobs."""

    def __init__(self, store: ScoringStore) -> None:
        self._store = store

    async def find_url_duplicate(self, user_id: str, job: JobRecord) -> Optional[JobRecord]:
        normalized = normalize_job_url(job.url)
        if not normalized:
            return None

        for candidate in await self._store.find_jobs_by_url(user_id, job.url):
            if _usable(candidate, job):
                return candidate

        for candidate in await self._store.list_user_jobs(user_id, scored_only=True):
            if _usable(candidate, job) and normalize_job_url(candidate.url) == normalized:
                return candidate
        return None

    async def find_fingerprint_duplicate(self, user_id: str, job: JobRecord) -> Optional[JobRecord]:
        # Linear in the user's scored job count.
        fingerprint = build_job_fingerprint(job.title, job.company, job.description, job.location)
        for candidate in await self._store.list_user_jobs(user_id, scored_only=True):
            if not _usable(candidate, job):
                continue
            candidate_fp = build_job_fingerprint(
                candidate.title, candidate.company, candidate.description, candidate.location
            )
            if candidate_fp == fingerprint:
                return candidate
        return None

    async def find_duplicate(self, user_id: str, job: JobRecord) -> Optional[DuplicateMatch]:
        """URL identity first, content fingerprint second."""

        by_url = await self.find_url_duplicate(user_id, job)
        if by_url is not None:
            return DuplicateMatch("url", by_url)
        by_fingerprint = await self.find_fingerprint_duplicate(user_id, job)
        if by_fingerprint is not None:
            return DuplicateMatch("fingerprint", by_fingerprint)
        return None


def build_copied_score_fields(source: JobRecord, *, now_ms: Optional[int] = None) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "aiScore": source.ai_score,
        "aiDescription": f"{source.ai_description or ''}{COPIED_SCORE_MARKER}",
        "aiScoredAt": now_ms if now_ms is not None else int(time.time() * 1000),
    }
    if source.ai_requirement_checks is not None:
        fields["aiRequirementChecks"] = [
            check.model_dump() for check in source.ai_requirement_checks
        ]
    return fields


async def copy_score(store: ScoringStore, target: JobRecord, source: JobRecord) -> Dict[str, Any]:
    fields = build_copied_score_fields(source)
    await store.patch_job(target.id, fields)
    logger.info("Copied score %s from job %s to job %s", source.ai_score, source.id, target.id)
    return fields
