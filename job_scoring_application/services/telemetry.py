from __future__ import annotations

import importlib
import logging
from typing import Any, Dict

from opentelemetry import _logs as logs
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

from ..config import settings

DEFAULT_POSTHOG_ENDPOINT = "https://us.i.posthog.com/i/v1/logs"
EU_POSTHOG_ENDPOINT = "https://eu.i.posthog.com/i/v1/logs"

_logger_provider: LoggerProvider | None = None
_event_logger: logging.Logger | None = None

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def is_enabled() -> bool:
    return bool(settings.posthog_project_api_key) and not settings.posthog_disabled


def _resolve_endpoint() -> str:
    if settings.posthog_logs_endpoint:
        return settings.posthog_logs_endpoint.rstrip("/")
    if (settings.posthog_region or "").lower().startswith("eu"):
        return EU_POSTHOG_ENDPOINT
    return DEFAULT_POSTHOG_ENDPOINT


def _current_run_ids() -> Dict[str, str]:
    """Best-effort: workflow/activity identifiers when called inside Temporal."""

    for module_name in ("temporalio.activity", "temporalio.workflow"):
        try:
            run_info = importlib.import_module(module_name).info()
        except Exception:  # noqa: BLE001
            continue
        workflow_id = getattr(run_info, "workflow_id", None)
        if isinstance(workflow_id, str) and workflow_id:
            ids = {"workflowId": workflow_id}
            activity_type = getattr(run_info, "activity_type", None)
            if isinstance(activity_type, str) and activity_type:
                ids["activityType"] = activity_type
            return ids
    return {}


def _ensure_event_logger() -> logging.Logger:
    global _event_logger, _logger_provider

    if _event_logger:
        return _event_logger

    token = settings.posthog_project_api_key
    if not token:
        raise RuntimeError("POSTHOG_PROJECT_API_KEY is not configured")

    provider = LoggerProvider()
    logs.set_logger_provider(provider)
    exporter = OTLPLogExporter(
        endpoint=_resolve_endpoint(),
        headers={"Authorization": f"Bearer {token}"},
    )
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))

    logger = logging.getLogger("job_scoring.events")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    # A second call must not stack another OTLP handler.
    logger.handlers = [h for h in logger.handlers if not isinstance(h, LoggingHandler)]
    logger.addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))

    _logger_provider = provider
    _event_logger = logger
    return logger


def emit_scoring_event(event: str, *, level: str = "info", message: str | None = None, **attributes: Any) -> None:
    """Ship one structured scoring/scheduling event to PostHog over OTLP.

    Attribute values that are not OTLP primitives are stringified.
    """

    logger = _ensure_event_logger()

    payload: Dict[str, Any] = {"event": event, **_current_run_ids()}
    for key, value in attributes.items():
        if value is None:
            continue
        payload[key] = value if isinstance(value, (str, bool, int, float)) else str(value)

    text = message or event
    scrape_id = payload.get("scrapeId")
    if scrape_id and f"scrape_id={scrape_id}" not in text:
        text = f"{text} | scrape_id={scrape_id}"

    logger.log(_LEVELS.get(level.lower(), logging.INFO), text, extra=payload, stacklevel=2)


def force_flush(timeout_ms: int = 30000) -> bool:
    if _logger_provider:
        return _logger_provider.force_flush(timeout_ms)
    return True
