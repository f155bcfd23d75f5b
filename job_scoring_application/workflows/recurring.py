from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from ..components.models import EmailSettings, RecurringConfigRecord
from ..config import settings
from ..constants import SCHEDULE_FIELDS
from ..services.store import ScoringStore
from ..services.timers import TimerScheduler
from .exceptions import AccessDeniedWorkflowError, ScheduleValidationWorkflowError
from .helpers.recurrence import calculate_next_run, validate_schedule

logger = logging.getLogger("temporal.scheduler.recurring")

NOT_FOUND_MESSAGE = "Recurring job scrape not found or access denied"

# Python argument name -> stored field name
_FIELD_ALIASES: Dict[str, str] = {
    "name": "name",
    "search_url": "searchUrl",
    "location": "location",
    "frequency": "frequency",
    "hour": "hour",
    "minute": "minute",
    "day_of_week": "dayOfWeek",
    "day_of_month": "dayOfMonth",
    "enabled": "enabled",
    "user_email": "userEmail",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_location(location: Optional[str], *, creating: bool) -> str:
    cleaned = (location or "").strip()
    if not cleaned:
        if creating:
            raise ScheduleValidationWorkflowError("Location is required for recurring job scrapes")
        raise ScheduleValidationWorkflowError("Location cannot be empty")
    return cleaned


class RecurringScrapeController:
    """Owns the single live timer of each recurring config.

    Every path that changes when a config should fire cancels the stored
    handle before a new one is armed, and the handle is written back to the
    config record, never held in process state.
    """

    def __init__(
        self,
        store: ScoringStore,
        timers: TimerScheduler,
        *,
        now: Callable[[], datetime] = _utc_now,
        tz_name: Optional[str] = None,
    ) -> None:
        self._store = store
        self._timers = timers
        self._now = now
        self._tz_name = tz_name

    async def _get_owned(self, config_id: str, user_id: str) -> RecurringConfigRecord:
        config = await self._store.get_recurring_config(config_id)
        if config is None or config.user_id != user_id:
            raise AccessDeniedWorkflowError(NOT_FOUND_MESSAGE)
        return config

    async def create(
        self,
        user_id: str,
        *,
        name: str,
        search_url: str,
        location: Optional[str],
        frequency: str,
        hour: int,
        minute: int,
        day_of_week: Optional[int] = None,
        day_of_month: Optional[int] = None,
        user_email: Optional[str] = None,
        email_settings: Optional[EmailSettings] = None,
    ) -> str:
        cleaned_location = _clean_location(location, creating=True)
        freq = validate_schedule(frequency, hour, minute, day_of_week, day_of_month)

        fields: Dict[str, Any] = {
            "userId": user_id,
            "name": name,
            "searchUrl": search_url,
            "location": cleaned_location,
            "frequency": freq.value,
            "hour": hour,
            "minute": minute,
            "enabled": True,
            "emailSettings": (email_settings or EmailSettings()).model_dump(by_alias=True, exclude_none=True),
            "createdAt": int(self._now().timestamp() * 1000),
        }
        if day_of_week is not None:
            fields["dayOfWeek"] = day_of_week
        if day_of_month is not None:
            fields["dayOfMonth"] = day_of_month
        if user_email:
            fields["userEmail"] = user_email

        config_id = await self._store.insert_recurring_config(fields)
        logger.info("Created recurring scrape config_id=%s user_id=%s frequency=%s", config_id, user_id, freq)
        await self.schedule_next_execution(config_id)
        return config_id

    async def update(self, config_id: str, user_id: str, **changes: Any) -> None:
        unknown = set(changes) - set(_FIELD_ALIASES)
        if unknown:
            raise ValueError(f"Unsupported recurring config fields: {sorted(unknown)}")

        config = await self._get_owned(config_id, user_id)
        if "location" in changes:
            changes["location"] = _clean_location(changes["location"], creating=False)

        merged = {name: getattr(config, name) for name in SCHEDULE_FIELDS}
        merged.update({key: value for key, value in changes.items() if key in SCHEDULE_FIELDS})
        validate_schedule(
            merged["frequency"],
            merged["hour"],
            merged["minute"],
            merged["day_of_week"],
            merged["day_of_month"],
        )

        schedule_changed = any(
            key in SCHEDULE_FIELDS and getattr(config, key) != value for key, value in changes.items()
        )
        patch = {_FIELD_ALIASES[key]: value for key, value in changes.items()}
        disabled = not merged["enabled"]
        if (schedule_changed or disabled) and config.timer_handle:
            await self._timers.cancel(config.timer_handle)
        if (schedule_changed and config.timer_handle) or disabled:
            # A disabled config never advertises a pending run.
            patch["scheduledFunctionId"] = None
            patch["nextRun"] = None
        if patch:
            await self._store.patch_recurring_config(config_id, patch)

        if schedule_changed:
            logger.info(
                "Recurring schedule changed config_id=%s enabled=%s",
                config_id,
                merged["enabled"],
            )
            if merged["enabled"]:
                await self.schedule_next_execution(config_id)

    async def toggle(self, config_id: str, user_id: str, enabled: bool) -> None:
        await self.update(config_id, user_id, enabled=enabled)

    async def toggle_email_notifications(self, config_id: str, user_id: str, enabled: bool) -> None:
        config = await self._get_owned(config_id, user_id)
        email_settings = config.resolved_email_settings().model_copy(update={"enabled": enabled})
        await self._store.patch_recurring_config(
            config_id,
            {"emailSettings": email_settings.model_dump(by_alias=True, exclude_none=True)},
        )

    async def delete(self, config_id: str, user_id: str) -> None:
        config = await self._get_owned(config_id, user_id)
        if config.timer_handle:
            await self._timers.cancel(config.timer_handle)
        await self._store.delete_recurring_config(config_id)
        logger.info("Deleted recurring scrape config_id=%s", config_id)

    async def schedule_next_execution(self, config_id: str) -> Optional[int]:
        """Arm the next timer for an enabled config and store its handle.

        Returns the next run (epoch ms), or None when the config is gone or
        disabled.
        """

        config = await self._store.get_recurring_config(config_id)
        if config is None or not config.enabled:
            logger.info("Skipping schedule for missing/disabled config_id=%s", config_id)
            return None

        now = self._now()
        next_run = calculate_next_run(
            config.frequency,
            config.hour,
            config.minute,
            config.day_of_week,
            config.day_of_month,
            now=now,
            tz_name=self._tz_name,
        )
        delay_ms = next_run - int(now.timestamp() * 1000)

        if config.timer_handle:
            await self._timers.cancel(config.timer_handle)

        patch: Dict[str, Any] = {"nextRun": next_run, "scheduledFunctionId": None}
        if delay_ms > 0:
            patch["scheduledFunctionId"] = await self._timers.arm(delay_ms, config_id)
        await self._store.patch_recurring_config(config_id, patch)
        logger.info(
            "Scheduled recurring scrape config_id=%s next_run=%s delay_ms=%s",
            config_id,
            next_run,
            delay_ms,
        )
        return next_run

    async def _resolve_user_email(self, config: RecurringConfigRecord) -> Optional[str]:
        if config.user_email:
            return config.user_email
        email = await self._store.get_user_email(config.user_id)
        if email:
            await self._store.patch_recurring_config(config.id, {"userEmail": email})
        else:
            logger.info("No email on file for config_id=%s; running without notification", config.id)
        return email

    def _plan_notification(
        self, email_settings: EmailSettings, user_email: Optional[str]
    ) -> Tuple[Optional[str], Optional[int]]:
        """Split delivery into (email handed to scoring, delay for a separate send).

        At most one of the two is set; both are None when nothing is sent.
        """

        if not email_settings.enabled or not user_email:
            return None, None
        if email_settings.timing == "manual":
            if email_settings.manual_time is None:
                return None, None
            now = self._now().astimezone(ZoneInfo(self._tz_name or settings.scoring_timezone))
            send_at = now.replace(
                hour=email_settings.manual_time.hour,
                minute=email_settings.manual_time.minute,
                second=0,
                microsecond=0,
            )
            delay_ms = int((send_at - now).total_seconds() * 1000)
            if delay_ms <= 0:
                logger.info("Manual email time already passed today; skipping email for %s", user_email)
                return None, None
            return None, delay_ms
        if email_settings.delay_minutes <= 0:
            return user_email, None
        return None, email_settings.delay_minutes * 60_000

    async def execute(self, config_id: str, handle: Optional[str] = None) -> Optional[str]:
        """Timer callback: run one scrape for the config and arm the next timer.

        A config that was disabled, deleted or re-armed since the timer was set
        makes this a no-op.
        """

        config = await self._store.get_recurring_config(config_id)
        if config is None or not config.enabled:
            logger.info("Scheduling race: config_id=%s is gone or disabled; skipping run", config_id)
            return None
        if handle is not None and config.timer_handle != handle:
            logger.info(
                "Scheduling race: stale timer handle=%s for config_id=%s (live=%s); skipping run",
                handle,
                config_id,
                config.timer_handle,
            )
            return None

        await self._store.patch_recurring_config(
            config_id,
            {"scheduledFunctionId": None, "lastRun": int(self._now().timestamp() * 1000)},
        )

        scrape_id: Optional[str] = None
        try:
            user_email = await self._resolve_user_email(config)
            immediate_email, delay_ms = self._plan_notification(config.resolved_email_settings(), user_email)
            scrape_id = await self._store.start_recurring_scrape(config, user_email=immediate_email)
            logger.info("Started recurring scrape config_id=%s scrape_id=%s", config_id, scrape_id)
            if scrape_id and user_email and delay_ms is not None:
                await self._timers.arm_notification(delay_ms, scrape_id, user_email)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Recurring scrape failed to start config_id=%s: %s", config_id, exc)
        finally:
            await self.schedule_next_execution(config_id)
        return scrape_id
