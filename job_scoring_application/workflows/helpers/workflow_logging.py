from __future__ import annotations

import logging

from temporalio import workflow


def get_workflow_logger(fallback_name: str = "temporal.worker.scoring") -> logging.Logger | logging.LoggerAdapter:
    """Replay-safe workflow logger, or a plain named logger when no workflow loop is running."""

    logger = workflow.logger  # type: ignore[attr-defined]
    try:
        # Outside a workflow loop the adapter cannot check replay state and raises.
        logger.isEnabledFor(logging.INFO)
    except Exception:  # noqa: BLE001
        return logging.getLogger(fallback_name)
    return logger
