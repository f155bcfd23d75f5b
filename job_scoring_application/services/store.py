from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..components.models import (
    JobRecord,
    RecurringConfigRecord,
    ScrapeRecord,
    UsageCounter,
    UserLimits,
)
from .convex_client import convex_action, convex_mutation, convex_query


@dataclass(frozen=True)
class UsageUpdate:
    """New ``used`` value for one usage bucket, guarded by the version it was read at."""

    key: str
    used: int
    limit: int
    expected_version: int


class ScoringStore(Protocol):
    """Persistence contract for scrapes, jobs, usage counters and recurring configs.

    Patches are applied per document atomically; ``commit_usage`` is the one
    multi-document write and must apply every update or none.
    """

    async def get_scrape(self, scrape_id: str) -> Optional[ScrapeRecord]: ...

    async def patch_scrape(self, scrape_id: str, fields: Dict[str, Any]) -> None: ...

    async def list_scrape_jobs(self, scrape_id: str) -> List[JobRecord]: ...

    async def list_unscored_jobs(self, scrape_id: str) -> List[JobRecord]: ...

    async def count_unscored_jobs(self, scrape_id: str) -> int: ...

    async def get_job(self, job_id: str) -> Optional[JobRecord]: ...

    async def patch_job(self, job_id: str, fields: Dict[str, Any]) -> None: ...

    async def find_jobs_by_url(self, user_id: str, url: str) -> List[JobRecord]: ...

    async def list_user_jobs(self, user_id: str, *, scored_only: bool = False) -> List[JobRecord]: ...

    async def get_usage(self, user_id: str, key: str) -> Optional[UsageCounter]: ...

    async def commit_usage(self, user_id: str, updates: Sequence[UsageUpdate]) -> bool: ...

    async def get_user_limits(self, user_id: str) -> Optional[UserLimits]: ...

    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def get_user_email(self, user_id: str) -> Optional[str]: ...

    async def insert_recurring_config(self, fields: Dict[str, Any]) -> str: ...

    async def get_recurring_config(self, config_id: str) -> Optional[RecurringConfigRecord]: ...

    async def patch_recurring_config(self, config_id: str, fields: Dict[str, Any]) -> None: ...

    async def delete_recurring_config(self, config_id: str) -> None: ...

    async def start_recurring_scrape(
        self, config: RecurringConfigRecord, user_email: Optional[str] = None
    ) -> Optional[str]: ...

    async def send_scoring_email(self, kind: str, payload: Dict[str, Any]) -> None: ...


def _as_list(res: Any, what: str) -> List[Dict[str, Any]]:
    if res is None:
        return []
    if not isinstance(res, list):
        raise RuntimeError(f"Unexpected {what} payload: {res!r}")
    return [item for item in res if isinstance(item, dict)]


def _as_dict(res: Any, what: str) -> Optional[Dict[str, Any]]:
    if res is None:
        return None
    if not isinstance(res, dict):
        raise RuntimeError(f"Unexpected {what} payload: {res!r}")
    return res


class ConvexScoringStore:
    """ScoringStore backed by Convex queries/mutations exposed on the router."""

    async def get_scrape(self, scrape_id: str) -> Optional[ScrapeRecord]:
        doc = _as_dict(await convex_query("router:getJobScrape", {"scrapeId": scrape_id}), "scrape")
        return ScrapeRecord.model_validate(doc) if doc else None

    async def patch_scrape(self, scrape_id: str, fields: Dict[str, Any]) -> None:
        await convex_mutation("router:patchJobScrape", {"scrapeId": scrape_id, "fields": fields})

    async def list_scrape_jobs(self, scrape_id: str) -> List[JobRecord]:
        res = await convex_query("router:listJobsForScrape", {"scrapeId": scrape_id})
        return [JobRecord.model_validate(doc) for doc in _as_list(res, "jobs")]

    async def list_unscored_jobs(self, scrape_id: str) -> List[JobRecord]:
        res = await convex_query("router:getUnscoredJobsForScrape", {"scrapeId": scrape_id})
        return [JobRecord.model_validate(doc) for doc in _as_list(res, "unscored jobs")]

    async def count_unscored_jobs(self, scrape_id: str) -> int:
        res = await convex_query("router:countUnscoredJobsForScrape", {"scrapeId": scrape_id})
        if isinstance(res, bool) or not isinstance(res, (int, float)):
            raise RuntimeError(f"Unexpected unscored count payload: {res!r}")
        return int(res)

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        doc = _as_dict(await convex_query("router:getJob", {"jobId": job_id}), "job")
        return JobRecord.model_validate(doc) if doc else None

    async def patch_job(self, job_id: str, fields: Dict[str, Any]) -> None:
        await convex_mutation("router:patchJob", {"jobId": job_id, "fields": fields})

    async def find_jobs_by_url(self, user_id: str, url: str) -> List[JobRecord]:
        res = await convex_query("router:findJobsByUrl", {"userId": user_id, "url": url})
        return [JobRecord.model_validate(doc) for doc in _as_list(res, "jobs by url")]

    async def list_user_jobs(self, user_id: str, *, scored_only: bool = False) -> List[JobRecord]:
        res = await convex_query("router:listUserJobs", {"userId": user_id, "scoredOnly": scored_only})
        return [JobRecord.model_validate(doc) for doc in _as_list(res, "user jobs")]

    async def get_usage(self, user_id: str, key: str) -> Optional[UsageCounter]:
        doc = _as_dict(await convex_query("router:getAiUsage", {"userId": user_id, "key": key}), "usage")
        if not doc:
            return None
        return UsageCounter(
            key=key,
            used=int(doc.get("used") or 0),
            limit=int(doc.get("limit") or 0),
            version=int(doc.get("version") or 0),
        )

    async def commit_usage(self, user_id: str, updates: Sequence[UsageUpdate]) -> bool:
        # The mutation runs as one Convex transaction and compares every
        # expectedVersion before writing any bucket.
        res = await convex_mutation(
            "router:commitAiUsage",
            {
                "userId": user_id,
                "updates": [
                    {
                        "key": update.key,
                        "used": update.used,
                        "limit": update.limit,
                        "expectedVersion": update.expected_version,
                    }
                    for update in updates
                ],
            },
        )
        if isinstance(res, dict):
            return bool(res.get("committed"))
        return bool(res)

    async def get_user_limits(self, user_id: str) -> Optional[UserLimits]:
        doc = _as_dict(await convex_query("router:getUserAiLimits", {"userId": user_id}), "user limits")
        return UserLimits.model_validate(doc) if doc else None

    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return _as_dict(await convex_query("router:getUserProfile", {"userId": user_id}), "user profile")

    async def get_user_email(self, user_id: str) -> Optional[str]:
        res = await convex_query("router:getUserEmail", {"userId": user_id})
        return res if isinstance(res, str) and res else None

    async def insert_recurring_config(self, fields: Dict[str, Any]) -> str:
        res = await convex_mutation("router:insertRecurringJobScrape", {"fields": fields})
        if not isinstance(res, str) or not res:
            raise RuntimeError(f"Unexpected recurring config id: {res!r}")
        return res

    async def get_recurring_config(self, config_id: str) -> Optional[RecurringConfigRecord]:
        doc = _as_dict(
            await convex_query("router:getRecurringJobScrape", {"id": config_id}),
            "recurring config",
        )
        return RecurringConfigRecord.model_validate(doc) if doc else None

    async def patch_recurring_config(self, config_id: str, fields: Dict[str, Any]) -> None:
        await convex_mutation("router:patchRecurringJobScrape", {"id": config_id, "fields": fields})

    async def delete_recurring_config(self, config_id: str) -> None:
        await convex_mutation("router:deleteRecurringJobScrape", {"id": config_id})

    async def start_recurring_scrape(
        self, config: RecurringConfigRecord, user_email: Optional[str] = None
    ) -> Optional[str]:
        args: Dict[str, Any] = {"recurringJobScrapeId": config.id}
        if user_email:
            # Scoring mails this address as soon as the pass completes.
            args["userEmail"] = user_email
        res = await convex_action("router:startRecurringJobScrape", args)
        return res if isinstance(res, str) else None

    async def send_scoring_email(self, kind: str, payload: Dict[str, Any]) -> None:
        await convex_action(f"email:{kind}", payload)


_store: Optional[ScoringStore] = None


def get_store() -> ScoringStore:
    global _store
    if _store is None:
        _store = ConvexScoringStore()
    return _store


# Test helper to inject an in-memory store
def _set_store_for_tests(store: ScoringStore | None) -> None:
    global _store
    _store = store
