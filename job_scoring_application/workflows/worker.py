import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from temporalio import workflow
from temporalio.client import Client
from temporalio.worker import Interceptor, Worker, WorkflowInboundInterceptor, WorkflowInterceptorClassInput

from ..config import settings
from ..services import telemetry
from ..services.timers import TemporalTimerScheduler, configure_timer_scheduler
from . import activities
from .recurring_workflow import DelayedScoringEmailWorkflow, RecurringScrapeExecutionWorkflow
from .scoring_workflow import ScoreScrapeWorkflow

WORKFLOW_CLASSES = [
    ScoreScrapeWorkflow,
    RecurringScrapeExecutionWorkflow,
    DelayedScoringEmailWorkflow,
]

ACTIVITY_FUNCTIONS = [
    activities.get_scrape_snapshot,
    activities.load_unscored_job_ids,
    activities.count_unscored_jobs,
    activities.update_scrape_progress,
    activities.score_job,
    activities.notify_scoring_complete,
    activities.execute_recurring_scrape,
]


class WorkflowStartLoggingInterceptor(WorkflowInboundInterceptor):
    """Log workflow starts for quick visibility in the worker console."""

    def __init__(self, next: WorkflowInboundInterceptor) -> None:
        super().__init__(next)
        self._logger = logging.getLogger("temporal.worker.workflow")

    async def execute_workflow(self, input: object) -> object:  # noqa: A002
        try:
            info = workflow.info()
            self._logger.info(
                "Workflow run started: type=%s workflow_id=%s run_id=%s task_queue=%s",
                info.workflow_type,
                info.workflow_id,
                info.run_id,
                info.task_queue,
            )
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Workflow start logging failed: %s", exc)
        return await super().execute_workflow(input)


class WorkflowLoggingInterceptor(Interceptor):
    def workflow_interceptor_class(
        self, input: WorkflowInterceptorClassInput  # noqa: ARG002
    ) -> Optional[type[WorkflowInboundInterceptor]]:
        return WorkflowStartLoggingInterceptor


class _SchedulingOnly(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith("temporal.scheduler")


def _setup_logging(log_dir: Path = Path("logs")) -> logging.Logger:
    """Log to stdout and a rotating file; recurring-schedule logs also go to scheduling.log."""

    log_dir.mkdir(parents=True, exist_ok=True)

    fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    handlers: list[logging.Handler] = [
        RotatingFileHandler(log_dir / "temporal_worker.log", maxBytes=5_000_000, backupCount=3),
        logging.StreamHandler(sys.stdout),
    ]
    scheduling_handler = RotatingFileHandler(log_dir / "scheduling.log", maxBytes=2_000_000, backupCount=2)
    scheduling_handler.setLevel(logging.INFO)
    scheduling_handler.addFilter(_SchedulingOnly())
    handlers.append(scheduling_handler)

    level = logging.DEBUG if settings.job_scoring_debug else logging.INFO
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)
    # HTTPX logs every model request at INFO; keep them quiet unless debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.job_scoring_debug else logging.WARNING)
    return logging.getLogger("temporal.worker")


async def main() -> None:
    logger = _setup_logging()
    logger.info("Worker main() started.")
    logger.info("Settings: Temporal=%s, Convex=%s", settings.temporal_address, settings.convex_url)
    if telemetry.is_enabled():
        logger.info("PostHog scoring events enabled.")
    logger.info("Connecting to Temporal at %s...", settings.temporal_address)
    try:
        client = await asyncio.wait_for(
            Client.connect(
                settings.temporal_address,
                namespace=settings.temporal_namespace,
            ),
            timeout=10.0,
        )
    except asyncio.TimeoutError:
        logger.error("Timed out connecting to Temporal at %s after 10 seconds.", settings.temporal_address)
        logger.error("Ensure the Temporal server is running and accessible.")
        return
    except Exception as e:
        logger.exception("Error connecting to Temporal: %s", e)
        return

    logger.info("Connected to Temporal!")
    configure_timer_scheduler(TemporalTimerScheduler(client, settings.task_queue))

    worker = Worker(
        client,
        task_queue=settings.task_queue,
        workflows=WORKFLOW_CLASSES,
        activities=ACTIVITY_FUNCTIONS,
        interceptors=[WorkflowLoggingInterceptor()],
    )
    logger.info(
        "Worker started. Namespace=%s Address=%s TaskQueue=%s pid=%s",
        settings.temporal_namespace,
        settings.temporal_address,
        settings.task_queue,
        os.getpid(),
    )
    try:
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Worker cancelled; shutting down...")
    finally:
        if telemetry.is_enabled():
            telemetry.force_flush()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger("temporal.worker").info("Exiting on CTRL+C")


if __name__ == "__main__":
    run()
