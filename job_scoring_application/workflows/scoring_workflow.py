from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError

from .helpers.workflow_logging import get_workflow_logger

with workflow.unsafe.imports_passed_through():
    from ..config import runtime_config
    from ..constants import QUOTA_EXCEEDED_ERROR_TYPE, QUOTA_PAUSE_MESSAGE, ScrapeStatus
    from .activities import (
        count_unscored_jobs,
        get_scrape_snapshot,
        load_unscored_job_ids,
        notify_scoring_complete,
        score_job,
        update_scrape_progress,
    )
    from .exceptions import QuotaExceededWorkflowError

SCORING_WORKFLOW_NAME = "ScoreScrape"
STORE_TIMEOUT = timedelta(seconds=60)
SCORE_JOB_TIMEOUT = timedelta(minutes=3)

# Quota rejections must surface on the first attempt; the pass skips other
# failures itself, so the score activity is never retried by Temporal.
SCORE_JOB_RETRY = RetryPolicy(maximum_attempts=1)
STORE_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=2),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(seconds=30),
    maximum_attempts=5,
)


def scoring_workflow_id(scrape_id: str) -> str:
    return f"score-scrape-{scrape_id}"


@dataclass
class ScoreScrapeInput:
    scrape_id: str
    user_id: str
    user_email: Optional[str] = None
    resume: bool = False
    batch_size: Optional[int] = None
    batch_delay_seconds: Optional[float] = None


@dataclass
class ScoreScrapeResult:
    scrape_id: str
    status: str
    total_jobs_to_score: int
    jobs_scored: int
    model_scored: int = 0
    copied: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)
    pause_scope: Optional[str] = None


def quota_exceeded_scope(error: BaseException) -> Optional[str]:
    """Exhausted scope of a quota rejection raised directly or wrapped by Temporal, else None."""

    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, QuotaExceededWorkflowError):
            return current.scope.value
        if isinstance(current, ApplicationError) and current.type == QUOTA_EXCEEDED_ERROR_TYPE:
            details = current.details
            return str(details[0]) if details else "unknown"
        if isinstance(current, ActivityError) and current.cause is not None:
            current = current.cause
        else:
            current = current.__cause__
    return None


def is_quota_exceeded(error: BaseException) -> bool:
    return quota_exceeded_scope(error) is not None


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[idx : idx + size] for idx in range(0, len(items), size)]


@workflow.defn(name=SCORING_WORKFLOW_NAME)
class ScoreScrapeWorkflow:
    """One scoring pass over the unscored jobs of a scrape.

    Jobs are handled one at a time in fixed-size batches with a pause between
    batches. A quota rejection parks the scrape in ``scoring_paused``; any other
    per-job failure leaves that job unscored and the pass moves on.
    """

    @workflow.run
    async def run(self, params: ScoreScrapeInput) -> ScoreScrapeResult:  # type: ignore[override]
        logger = get_workflow_logger()
        scrape_id = params.scrape_id
        batch_size = max(1, params.batch_size or runtime_config.scoring_batch_size)
        batch_delay = (
            params.batch_delay_seconds
            if params.batch_delay_seconds is not None
            else runtime_config.scoring_batch_delay_seconds
        )

        async def _store(activity_fn: Any, *args: Any) -> Any:
            return await workflow.execute_activity(
                activity_fn,
                args=list(args),
                start_to_close_timeout=STORE_TIMEOUT,
                retry_policy=STORE_RETRY,
            )

        def _now_ms() -> int:
            return int(workflow.now().timestamp() * 1000)

        async def _true_scored(total: int) -> int:
            unscored = await _store(count_unscored_jobs, scrape_id)
            return max(0, total - int(unscored))

        snapshot: Optional[Dict[str, Any]] = await _store(get_scrape_snapshot, scrape_id)
        if snapshot is None:
            raise ApplicationError(f"Scrape {scrape_id} not found", non_retryable=True)

        job_ids: List[str] = await _store(load_unscored_job_ids, scrape_id)
        previous_total = snapshot.get("totalJobsToScore")

        if params.resume and previous_total:
            total = int(previous_total)
            scored = max(0, total - len(job_ids))
        else:
            total = len(job_ids)
            scored = 0

        result = ScoreScrapeResult(
            scrape_id=scrape_id,
            status=ScrapeStatus.SCORING.value,
            total_jobs_to_score=total,
            jobs_scored=scored,
        )

        if not job_ids:
            result.status = ScrapeStatus.COMPLETED.value
            result.jobs_scored = total
            await _store(
                update_scrape_progress,
                scrape_id,
                {
                    "status": result.status,
                    "totalJobsToScore": total,
                    "jobsScored": total,
                    "completedAt": _now_ms(),
                },
            )
            logger.info("No unscored jobs for scrape %s; marked completed", scrape_id)
            await self._notify(params, logger)
            return result

        try:
            await _store(
                update_scrape_progress,
                scrape_id,
                {"status": ScrapeStatus.SCORING.value, "totalJobsToScore": total, "jobsScored": scored},
            )
            logger.info(
                "Scoring scrape %s: %d jobs to score (resume=%s, already scored=%d)",
                scrape_id,
                len(job_ids),
                params.resume,
                scored,
            )

            for batch_index, batch in enumerate(_chunks(job_ids, batch_size)):
                if batch_index > 0 and batch_delay > 0:
                    await workflow.sleep(timedelta(seconds=batch_delay))

                for job_id in batch:
                    try:
                        outcome = await workflow.execute_activity(
                            score_job,
                            {"scrapeId": scrape_id, "userId": params.user_id, "jobId": job_id},
                            start_to_close_timeout=SCORE_JOB_TIMEOUT,
                            retry_policy=SCORE_JOB_RETRY,
                        )
                    except Exception as exc:  # noqa: BLE001
                        scope = quota_exceeded_scope(exc)
                        if scope is not None:
                            result.jobs_scored = await _true_scored(total)
                            result.status = ScrapeStatus.SCORING_PAUSED.value
                            result.pause_scope = scope
                            await _store(
                                update_scrape_progress,
                                scrape_id,
                                {
                                    "status": result.status,
                                    "jobsScored": result.jobs_scored,
                                    "errorMessage": QUOTA_PAUSE_MESSAGE.format(scope=scope),
                                },
                            )
                            logger.warning(
                                "%s AI quota exhausted for scrape %s; paused at %d/%d",
                                scope,
                                scrape_id,
                                result.jobs_scored,
                                total,
                            )
                            return result

                        reason = str(exc.cause) if isinstance(exc, ActivityError) and exc.cause else str(exc)
                        result.failed += 1
                        result.failures.append(f"{job_id}: {reason}")
                        logger.error("Failed to score job %s in scrape %s: %s", job_id, scrape_id, reason)
                        continue

                    kind = outcome.get("outcome") if isinstance(outcome, dict) else None
                    if kind == "missing":
                        continue
                    if kind == "scored":
                        result.model_scored += 1
                    elif isinstance(kind, str) and kind.startswith("copied_"):
                        result.copied += 1
                    scored = min(total, scored + 1)
                    result.jobs_scored = scored
                    await _store(update_scrape_progress, scrape_id, {"jobsScored": scored})

            result.jobs_scored = await _true_scored(total)
            result.status = ScrapeStatus.COMPLETED.value
            await _store(
                update_scrape_progress,
                scrape_id,
                {"status": result.status, "jobsScored": result.jobs_scored, "completedAt": _now_ms()},
            )
        except Exception as exc:  # noqa: BLE001
            # A broken pass must not leave the scrape stuck in "scoring".
            logger.error("Scoring pass for scrape %s failed: %s", scrape_id, exc)
            result.status = ScrapeStatus.COMPLETED.value
            result.failures.append(str(exc))
            await _store(
                update_scrape_progress,
                scrape_id,
                {"status": result.status, "completedAt": _now_ms(), "errorMessage": str(exc)},
            )
            return result

        logger.info(
            "Scoring complete for scrape %s: %d/%d scored (model=%d copied=%d failed=%d)",
            scrape_id,
            result.jobs_scored,
            total,
            result.model_scored,
            result.copied,
            result.failed,
        )
        await self._notify(params, logger)
        return result

    async def _notify(self, params: ScoreScrapeInput, logger: Any) -> None:
        if not params.user_email:
            return
        try:
            await workflow.execute_activity(
                notify_scoring_complete,
                {"scrapeId": params.scrape_id, "userEmail": params.user_email},
                start_to_close_timeout=STORE_TIMEOUT,
                retry_policy=RetryPolicy(maximum_attempts=3),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Completion email failed for scrape %s: %s", params.scrape_id, exc)
