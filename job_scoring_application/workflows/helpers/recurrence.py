from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ...config import settings
from ...constants import Frequency
from ..exceptions import ScheduleValidationWorkflowError


def validate_schedule(
    frequency: str,
    hour: int,
    minute: int,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> Frequency:
    """Reject malformed schedule fields before anything is persisted."""

    try:
        freq = Frequency(frequency)
    except ValueError as exc:
        raise ScheduleValidationWorkflowError(f"Invalid frequency: {frequency!r}") from exc

    if freq is Frequency.WEEKLY and (day_of_week is None or not 0 <= day_of_week <= 6):
        raise ScheduleValidationWorkflowError("Invalid day of week for weekly schedule")
    if freq is Frequency.MONTHLY and (day_of_month is None or not 1 <= day_of_month <= 31):
        raise ScheduleValidationWorkflowError("Invalid day of month for monthly schedule")
    if not isinstance(hour, int) or not 0 <= hour <= 23:
        raise ScheduleValidationWorkflowError("Invalid hour")
    if not isinstance(minute, int) or not 0 <= minute <= 59:
        raise ScheduleValidationWorkflowError("Invalid minute")
    return freq


def _sunday_first_weekday(value: datetime) -> int:
    # Schedules store 0 = Sunday; datetime.weekday() has 0 = Monday.
    return (value.weekday() + 1) % 7


def _with_day_clamped(value: datetime, year: int, month: int, day: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day, last_day))


def _next_month(value: datetime, day: int) -> datetime:
    year, month = (value.year + 1, 1) if value.month == 12 else (value.year, value.month + 1)
    return _with_day_clamped(value, year, month, day)


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def calculate_next_run(
    frequency: str,
    hour: int,
    minute: int,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> int:
    """Next execution instant (epoch ms, UTC) for a recurring schedule.

    Calendar arithmetic runs on wall-clock time in the reference zone using
    the zone's UTC offset at ``now``; the same offset converts the result
    back. A run that would land across a DST change keeps that offset.
    """

    freq = validate_schedule(frequency, hour, minute, day_of_week, day_of_month)
    zone = ZoneInfo(tz_name or settings.scoring_timezone)
    now_utc = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    offset = now_utc.astimezone(zone).utcoffset() or timedelta(0)

    local_now = now_utc.replace(tzinfo=None) + offset
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if freq is Frequency.DAILY:
        if candidate <= local_now:
            candidate += timedelta(days=1)
    elif freq is Frequency.WEEKLY:
        assert day_of_week is not None
        days_until = (day_of_week - _sunday_first_weekday(candidate) + 7) % 7
        if days_until == 0 and candidate <= local_now:
            days_until = 7
        candidate += timedelta(days=days_until)
    else:
        assert day_of_month is not None
        candidate = _with_day_clamped(candidate, candidate.year, candidate.month, day_of_month)
        if candidate <= local_now:
            candidate = _next_month(candidate, day_of_month)

    next_run = (candidate - offset).replace(tzinfo=timezone.utc)
    while next_run <= now_utc:
        if freq is Frequency.DAILY:
            next_run += timedelta(days=1)
        elif freq is Frequency.WEEKLY:
            next_run += timedelta(days=7)
        else:
            assert day_of_month is not None
            next_run = _next_month(next_run, day_of_month)
    return _to_epoch_ms(next_run)
