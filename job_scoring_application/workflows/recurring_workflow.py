from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

from .helpers.workflow_logging import get_workflow_logger

with workflow.unsafe.imports_passed_through():
    from ..services.timers import DELAYED_EMAIL_WORKFLOW, RECURRING_EXECUTION_WORKFLOW
    from .activities import execute_recurring_scrape, notify_scoring_complete


@workflow.defn(name=RECURRING_EXECUTION_WORKFLOW)
class RecurringScrapeExecutionWorkflow:
    """Started with a delay by the timer scheduler; its workflow id is the timer handle."""

    @workflow.run
    async def run(self, config_id: str, handle: Optional[str] = None) -> Optional[str]:  # type: ignore[override]
        logger = get_workflow_logger("temporal.scheduler.recurring")
        scrape_id = await workflow.execute_activity(
            execute_recurring_scrape,
            args=[config_id, handle or workflow.info().workflow_id],
            start_to_close_timeout=timedelta(minutes=2),
            # Re-running after a partial success would start a second scrape.
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
        logger.info("Recurring execution finished config_id=%s scrape_id=%s", config_id, scrape_id)
        return scrape_id


@workflow.defn(name=DELAYED_EMAIL_WORKFLOW)
class DelayedScoringEmailWorkflow:
    """Sends a recurring run's summary email once the configured delay has passed."""

    @workflow.run
    async def run(self, scrape_id: str, user_email: str) -> Dict[str, Any]:  # type: ignore[override]
        logger = get_workflow_logger("temporal.scheduler.recurring")
        outcome = await workflow.execute_activity(
            notify_scoring_complete,
            {"scrapeId": scrape_id, "userEmail": user_email},
            start_to_close_timeout=timedelta(seconds=60),
            retry_policy=RetryPolicy(maximum_attempts=3),
        )
        logger.info("Delayed scoring email sent scrape_id=%s kind=%s", scrape_id, outcome.get("kind"))
        return outcome
