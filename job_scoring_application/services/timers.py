from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Optional, Protocol

from temporalio.client import Client
from temporalio.service import RPCError, RPCStatusCode

from ..config import settings

logger = logging.getLogger("temporal.scheduler.timers")

RECURRING_EXECUTION_WORKFLOW = "RecurringScrapeExecution"
DELAYED_EMAIL_WORKFLOW = "DelayedScoringEmail"


class TimerScheduler(Protocol):
    """Fires a recurring config's execution once after a delay.

    A handle is invalid once it has fired or been cancelled; cancelling an
    invalid handle is a no-op.
    """

    async def arm(self, delay_ms: int, config_id: str) -> str: ...

    async def arm_notification(self, delay_ms: int, scrape_id: str, user_email: str) -> str: ...

    async def cancel(self, handle: str) -> None: ...


def _new_handle(config_id: str) -> str:
    return f"recurring-{config_id}-{uuid.uuid4().hex[:12]}"


def _new_notification_handle(scrape_id: str) -> str:
    return f"scoring-email-{scrape_id}-{uuid.uuid4().hex[:12]}"


class TemporalTimerScheduler:
    """Arms timers as delayed-start Temporal workflows; the workflow id is the handle."""

    def __init__(self, client: Client, task_queue: Optional[str] = None) -> None:
        self._client = client
        self._task_queue = task_queue or settings.task_queue

    async def arm(self, delay_ms: int, config_id: str) -> str:
        handle = _new_handle(config_id)
        await self._client.start_workflow(
            RECURRING_EXECUTION_WORKFLOW,
            args=[config_id, handle],
            id=handle,
            task_queue=self._task_queue,
            start_delay=timedelta(milliseconds=max(0, delay_ms)),
        )
        logger.info("Armed recurring timer config_id=%s handle=%s delay_ms=%s", config_id, handle, delay_ms)
        return handle

    async def arm_notification(self, delay_ms: int, scrape_id: str, user_email: str) -> str:
        handle = _new_notification_handle(scrape_id)
        await self._client.start_workflow(
            DELAYED_EMAIL_WORKFLOW,
            args=[scrape_id, user_email],
            id=handle,
            task_queue=self._task_queue,
            start_delay=timedelta(milliseconds=max(0, delay_ms)),
        )
        logger.info("Armed scoring email scrape_id=%s handle=%s delay_ms=%s", scrape_id, handle, delay_ms)
        return handle

    async def cancel(self, handle: str) -> None:
        try:
            await self._client.get_workflow_handle(handle).terminate(reason="recurring schedule changed")
        except RPCError as exc:
            if exc.status == RPCStatusCode.NOT_FOUND:
                logger.info("Recurring timer already gone handle=%s", handle)
                return
            raise
        logger.info("Cancelled recurring timer handle=%s", handle)


FireCallback = Callable[[str, str], Awaitable[None]]
NotifyCallback = Callable[[str, str], Awaitable[None]]


class AsyncioTimerScheduler:
    """In-process timers on the running event loop, for local runs and tests."""

    def __init__(self, on_fire: FireCallback, on_notify: Optional[NotifyCallback] = None) -> None:
        self._on_fire = on_fire
        self._on_notify = on_notify
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def live_handles(self) -> list[str]:
        return list(self._pending)

    async def arm(self, delay_ms: int, config_id: str) -> str:
        handle = _new_handle(config_id)
        loop = asyncio.get_running_loop()
        self._pending[handle] = loop.call_later(max(0, delay_ms) / 1000, self._fire, config_id, handle)
        return handle

    async def cancel(self, handle: str) -> None:
        timer = self._pending.pop(handle, None)
        if timer is not None:
            timer.cancel()

    def _fire(self, config_id: str, handle: str) -> None:
        if self._pending.pop(handle, None) is None:
            return
        self._spawn(self._on_fire(config_id, handle))

    async def arm_notification(self, delay_ms: int, scrape_id: str, user_email: str) -> str:
        if self._on_notify is None:
            raise RuntimeError("AsyncioTimerScheduler was built without an on_notify callback")
        handle = _new_notification_handle(scrape_id)
        loop = asyncio.get_running_loop()
        self._pending[handle] = loop.call_later(
            max(0, delay_ms) / 1000, self._notify, scrape_id, user_email, handle
        )
        return handle

    def _notify(self, scrape_id: str, user_email: str, handle: str) -> None:
        if self._pending.pop(handle, None) is None or self._on_notify is None:
            return
        self._spawn(self._on_notify(scrape_id, user_email))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


_scheduler: Optional[TimerScheduler] = None


def get_timer_scheduler() -> TimerScheduler:
    if _scheduler is None:
        raise RuntimeError("Timer scheduler is not configured; call configure_timer_scheduler() at startup")
    return _scheduler


def configure_timer_scheduler(scheduler: TimerScheduler | None) -> None:
    global _scheduler
    _scheduler = scheduler
