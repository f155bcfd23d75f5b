from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Optional

from temporalio.client import Client
from temporalio.common import WorkflowIDConflictPolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from ..config import settings
from ..constants import (
    DAILY_LIMIT_STILL_EXCEEDED_MESSAGE,
    MONTHLY_LIMIT_STILL_EXCEEDED_MESSAGE,
    QuotaScope,
    ScrapeStatus,
)
from ..services.store import ScoringStore, get_store
from .exceptions import (
    AccessDeniedWorkflowError,
    InvalidScrapeStateWorkflowError,
    QuotaExceededWorkflowError,
)
from .quota_gate import QuotaGate
from .scoring_workflow import ScoreScrapeInput, ScoreScrapeWorkflow, scoring_workflow_id

logger = logging.getLogger("temporal.worker.scoring")

ScoringStarter = Callable[[ScoreScrapeInput], Awaitable[Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def temporal_starter(client: Client, task_queue: Optional[str] = None) -> ScoringStarter:
    """Start scoring passes on Temporal; one running pass per scrape."""

    async def _start(params: ScoreScrapeInput) -> Any:
        try:
            return await client.start_workflow(
                ScoreScrapeWorkflow.run,
                params,
                id=scoring_workflow_id(params.scrape_id),
                task_queue=task_queue or settings.task_queue,
                id_conflict_policy=WorkflowIDConflictPolicy.FAIL,
            )
        except WorkflowAlreadyStartedError:
            logger.info("Scoring pass already running for scrape %s", params.scrape_id)
            return None

    return _start


async def start_scoring_for_scrape(
    scrape_id: str,
    user_id: str,
    new_job_count: int,
    *,
    starter: ScoringStarter,
    user_email: Optional[str] = None,
) -> Any:
    """Entry point for scrape ingestion once new postings are persisted."""

    logger.info("Starting scoring for scrape %s (%d new jobs)", scrape_id, new_job_count)
    return await starter(ScoreScrapeInput(scrape_id=scrape_id, user_id=user_id, user_email=user_email))


async def resume_scoring(
    scrape_id: str,
    user_id: str,
    *,
    starter: ScoringStarter,
    store: Optional[ScoringStore] = None,
    gate: Optional[QuotaGate] = None,
    user_email: Optional[str] = None,
) -> ScrapeStatus:
    """Re-enter scoring for a scrape paused on quota.

    Returns ``completed`` when nothing was left to score, ``scoring`` when a
    new pass was started. Raises ``QuotaExceeded`` without touching the scrape
    if either quota is still exhausted.
    """

    store = store or get_store()
    gate = gate or QuotaGate(store)

    scrape = await store.get_scrape(scrape_id)
    if scrape is None or scrape.user_id != user_id:
        raise AccessDeniedWorkflowError("Scrape not found or access denied")
    if scrape.status != ScrapeStatus.SCORING_PAUSED:
        raise InvalidScrapeStateWorkflowError(
            f"Scrape {scrape_id} is not paused for scoring (status={scrape.status.value})"
        )

    unscored = await store.count_unscored_jobs(scrape_id)
    total = scrape.total_jobs_to_score if scrape.total_jobs_to_score is not None else unscored
    true_scored = max(0, total - unscored)

    if unscored == 0:
        await store.patch_scrape(
            scrape_id,
            {
                "status": ScrapeStatus.COMPLETED.value,
                "jobsScored": true_scored,
                "completedAt": _now_ms(),
            },
        )
        logger.info("Resume found nothing left to score for scrape %s; marked completed", scrape_id)
        return ScrapeStatus.COMPLETED

    quota = await gate.remaining(user_id)
    if quota.daily_remaining <= 0:
        raise QuotaExceededWorkflowError(DAILY_LIMIT_STILL_EXCEEDED_MESSAGE, scope=QuotaScope.DAILY)
    if quota.monthly_remaining <= 0:
        raise QuotaExceededWorkflowError(MONTHLY_LIMIT_STILL_EXCEEDED_MESSAGE, scope=QuotaScope.MONTHLY)

    await store.patch_scrape(
        scrape_id,
        {"status": ScrapeStatus.SCORING.value, "jobsScored": true_scored, "errorMessage": None},
    )
    logger.info(
        "Resuming scoring for scrape %s: %d/%d scored, %d remaining",
        scrape_id,
        true_scored,
        total,
        unscored,
    )
    try:
        await starter(
            ScoreScrapeInput(scrape_id=scrape_id, user_id=user_id, user_email=user_email, resume=True)
        )
    except Exception:
        # No pass is running; keep the scrape resumable.
        await store.patch_scrape(
            scrape_id,
            {"status": ScrapeStatus.SCORING_PAUSED.value, "errorMessage": scrape.error_message},
        )
        logger.exception("Failed to start resumed scoring pass for scrape %s", scrape_id)
        raise
    return ScrapeStatus.SCORING
