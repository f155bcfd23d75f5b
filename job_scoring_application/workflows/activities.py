from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, NotRequired, Optional, TypedDict
from zoneinfo import ZoneInfo

from temporalio import activity

from ..config import runtime_config, settings
from ..services import telemetry
from ..services.model_client import build_system_prompt, get_model_client
from ..services.store import get_store
from ..services.timers import get_timer_scheduler
from .dedup import DuplicateMatcher, copy_score
from .helpers.job_fields import build_job_text
from .quota_gate import QuotaGate
from .recurring import RecurringScrapeController

logger = logging.getLogger("temporal.worker.activities")

HIGH_SCORING_EMAIL = "sendHighScoringJobsEmail"
NO_HIGH_SCORING_EMAIL = "sendNoHighScoringJobsEmail"


class ScrapeSnapshot(TypedDict):
    scrapeId: str
    userId: str
    status: str
    totalJobsToScore: NotRequired[Optional[int]]
    jobsScored: NotRequired[Optional[int]]


class ScoreJobRequest(TypedDict):
    scrapeId: str
    userId: str
    jobId: str


class ScoreJobOutcome(TypedDict):
    jobId: str
    outcome: str
    score: NotRequired[Optional[float]]
    sourceJobId: NotRequired[str]


class NotifyRequest(TypedDict):
    scrapeId: str
    userEmail: str


def _emit(event: str, **attributes: Any) -> None:
    if not telemetry.is_enabled():
        return
    try:
        telemetry.emit_scoring_event(event, **attributes)
    except Exception:  # noqa: BLE001
        # Telemetry is best-effort; never fail scoring on logging issues.
        logger.debug("Telemetry emit failed for %s", event, exc_info=True)


@activity.defn
async def get_scrape_snapshot(scrape_id: str) -> Optional[ScrapeSnapshot]:
    scrape = await get_store().get_scrape(scrape_id)
    if scrape is None:
        return None
    return {
        "scrapeId": scrape.id,
        "userId": scrape.user_id,
        "status": scrape.status.value,
        "totalJobsToScore": scrape.total_jobs_to_score,
        "jobsScored": scrape.jobs_scored,
    }


@activity.defn
async def load_unscored_job_ids(scrape_id: str) -> List[str]:
    jobs = await get_store().list_unscored_jobs(scrape_id)
    return [job.id for job in jobs]


@activity.defn
async def count_unscored_jobs(scrape_id: str) -> int:
    return await get_store().count_unscored_jobs(scrape_id)


@activity.defn
async def update_scrape_progress(scrape_id: str, fields: Dict[str, Any]) -> None:
    await get_store().patch_scrape(scrape_id, fields)


@activity.defn
async def score_job(request: ScoreJobRequest) -> ScoreJobOutcome:
    """Score one job: reuse a duplicate's score when possible, else call the model.

    Quota rejections propagate as non-retryable ``QuotaExceeded`` errors; the
    job is left untouched.
    """

    store = get_store()
    job_id = request["jobId"]
    user_id = request["userId"]

    job = await store.get_job(job_id)
    if job is None:
        return {"jobId": job_id, "outcome": "missing"}
    if job.is_scored:
        return {"jobId": job_id, "outcome": "already_scored", "score": job.ai_score}

    matcher = DuplicateMatcher(store)
    match = await matcher.find_duplicate(user_id, job)
    if match is not None:
        await copy_score(store, job, match.source)
        _emit(
            "scoring.job.copied",
            scrapeId=request["scrapeId"],
            jobId=job_id,
            sourceJobId=match.source.id,
            matchKind=match.kind,
        )
        return {
            "jobId": job_id,
            "outcome": f"copied_{match.kind}",
            "score": match.source.ai_score,
            "sourceJobId": match.source.id,
        }

    await QuotaGate(store).check_and_increment(user_id)

    profile = await store.get_user_profile(user_id)
    result = await get_model_client().generate_score(
        build_system_prompt(profile),
        build_job_text(job.model_dump(by_alias=True)),
    )
    fields: Dict[str, Any] = {
        "aiScore": result.score,
        "aiDescription": result.description,
        "aiScoredAt": int(time.time() * 1000),
    }
    if result.requirement_checks is not None:
        fields["aiRequirementChecks"] = [check.model_dump() for check in result.requirement_checks]
    await store.patch_job(job_id, fields)

    logger.info("Scored job %s for scrape %s: %s", job_id, request["scrapeId"], result.score)
    _emit("scoring.job.scored", scrapeId=request["scrapeId"], jobId=job_id, score=result.score)
    return {"jobId": job_id, "outcome": "scored", "score": result.score}


def _dashboard_url(scrape_id: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/dashboard/jobs?scrape={scrape_id}"


def _start_of_today_ms() -> int:
    now = datetime.now(ZoneInfo(settings.scoring_timezone))
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def _created_since(created_at: Optional[int], since_ms: int) -> bool:
    return created_at is None or created_at >= since_ms


@activity.defn
async def notify_scoring_complete(request: NotifyRequest) -> Dict[str, Any]:
    """Send the high-scoring (or none-found) summary once a pass completes."""

    store = get_store()
    scrape_id = request["scrapeId"]
    jobs = await store.list_scrape_jobs(scrape_id)
    since = _start_of_today_ms()
    threshold = runtime_config.high_score_threshold
    high_scoring = sorted(
        (
            job
            for job in jobs
            if job.ai_score is not None and job.ai_score > threshold and _created_since(job.created_at, since)
        ),
        key=lambda job: job.ai_score or 0,
        reverse=True,
    )

    if high_scoring:
        payload: Dict[str, Any] = {
            "to": request["userEmail"],
            "scrapeId": scrape_id,
            "jobs": [
                {
                    "title": job.title,
                    "company": job.company,
                    "url": job.url,
                    "aiScore": job.ai_score,
                    "applyUrl": job.apply_url,
                }
                for job in high_scoring
            ],
        }
        kind = HIGH_SCORING_EMAIL
    else:
        payload = {
            "to": request["userEmail"],
            "scrapeId": scrape_id,
            "totalJobs": len(jobs),
            "dashboardUrl": _dashboard_url(scrape_id),
        }
        kind = NO_HIGH_SCORING_EMAIL

    await store.send_scoring_email(kind, payload)
    logger.info("Sent %s for scrape %s (%d high scoring)", kind, scrape_id, len(high_scoring))
    return {"kind": kind, "highScoring": len(high_scoring)}


@activity.defn
async def execute_recurring_scrape(config_id: str, handle: Optional[str] = None) -> Optional[str]:
    controller = RecurringScrapeController(get_store(), get_timer_scheduler())
    return await controller.execute(config_id, handle)
