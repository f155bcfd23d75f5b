from __future__ import annotations

from datetime import datetime, timezone

import pytest

from job_scoring_application.components.models import EmailSettings, ManualTime, RecurringConfigRecord
from job_scoring_application.testing.memory_store import InMemoryScoringStore
from job_scoring_application.workflows import activities as acts
from job_scoring_application.workflows.exceptions import (
    AccessDeniedWorkflowError,
    ScheduleValidationWorkflowError,
)
from job_scoring_application.workflows.recurring import RecurringScrapeController

NOW = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)  # Tuesday
NOW_MS = int(NOW.timestamp() * 1000)


def _ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _controller(timers):
    store = InMemoryScoringStore()
    return RecurringScrapeController(store, timers, now=lambda: NOW, tz_name="UTC"), store, timers


async def _create_daily(controller, **overrides):
    params = {
        "name": "Python roles",
        "search_url": "https://www.linkedin.com/jobs/search/?keywords=python",
        "location": " Amsterdam ",
        "frequency": "daily",
        "hour": 9,
        "minute": 0,
    }
    params.update(overrides)
    return await controller.create("user_1", **params)


@pytest.mark.asyncio
async def test_create_persists_and_arms_one_timer(recording_timers):
    controller, store, timers = _controller(recording_timers)

    config_id = await _create_daily(controller, user_email="me@example.com")

    doc = store.recurring[config_id]
    assert doc["location"] == "Amsterdam"
    assert doc["enabled"] is True
    assert doc["emailSettings"] == {"enabled": True, "timing": "auto", "delayMinutes": 5}
    assert doc["nextRun"] == _ms(2024, 5, 15, 9, 0)
    assert doc["scheduledFunctionId"] == "timer-1"
    assert timers.armed == [
        {"handle": "timer-1", "delay_ms": _ms(2024, 5, 15, 9, 0) - NOW_MS, "config_id": config_id}
    ]


@pytest.mark.asyncio
async def test_create_requires_location_and_valid_schedule(recording_timers):
    controller, store, timers = _controller(recording_timers)

    with pytest.raises(ScheduleValidationWorkflowError, match="Location is required"):
        await _create_daily(controller, location="   ")
    with pytest.raises(ScheduleValidationWorkflowError, match="Invalid day of week"):
        await _create_daily(controller, frequency="weekly")

    assert store.recurring == {}
    assert timers.armed == []


@pytest.mark.asyncio
async def test_schedule_change_cancels_then_rearms(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    await controller.update(config_id, "user_1", frequency="weekly", day_of_week=5, hour=7)

    assert timers.cancelled == ["timer-1"]
    assert list(timers.live) == ["timer-2"]
    doc = store.recurring[config_id]
    assert doc["scheduledFunctionId"] == "timer-2"
    assert doc["frequency"] == "weekly"
    assert doc["dayOfWeek"] == 5
    assert doc["nextRun"] == _ms(2024, 5, 17, 7, 0)


@pytest.mark.asyncio
async def test_non_schedule_update_keeps_timer(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    await controller.update(config_id, "user_1", name="Renamed", location="Utrecht")

    assert timers.cancelled == []
    assert len(timers.armed) == 1
    assert store.recurring[config_id]["name"] == "Renamed"
    assert store.recurring[config_id]["scheduledFunctionId"] == "timer-1"


@pytest.mark.asyncio
async def test_update_rejects_empty_location_and_bad_schedule(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    with pytest.raises(ScheduleValidationWorkflowError, match="Location cannot be empty"):
        await controller.update(config_id, "user_1", location="")
    with pytest.raises(ScheduleValidationWorkflowError, match="Invalid day of month"):
        await controller.update(config_id, "user_1", frequency="monthly")

    assert store.recurring[config_id]["frequency"] == "daily"
    assert timers.cancelled == []


@pytest.mark.asyncio
async def test_disable_cancels_and_enable_rearms(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    await controller.toggle(config_id, "user_1", False)

    doc = store.recurring[config_id]
    assert doc["enabled"] is False
    assert doc["scheduledFunctionId"] is None
    assert doc["nextRun"] is None
    assert timers.live == {}

    await controller.toggle(config_id, "user_1", True)

    assert store.recurring[config_id]["scheduledFunctionId"] == "timer-2"
    assert list(timers.live) == ["timer-2"]


@pytest.mark.asyncio
async def test_delete_cancels_timer(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    await controller.delete(config_id, "user_1")

    assert config_id not in store.recurring
    assert timers.cancelled == ["timer-1"]
    assert timers.live == {}


@pytest.mark.asyncio
async def test_other_users_cannot_touch_config(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    with pytest.raises(AccessDeniedWorkflowError, match="Recurring job scrape not found or access denied"):
        await controller.update(config_id, "user_2", hour=10)
    with pytest.raises(AccessDeniedWorkflowError):
        await controller.delete(config_id, "user_2")
    with pytest.raises(AccessDeniedWorkflowError):
        await controller.toggle(config_id, "user_2", False)

    assert config_id in store.recurring
    assert timers.cancelled == []


@pytest.mark.asyncio
async def test_execute_starts_scrape_and_arms_next_run(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    scrape_id = await controller.execute(config_id, "timer-1")

    assert scrape_id is not None
    assert store.started_scrapes == [scrape_id]
    assert store.scrapes[scrape_id]["recurringJobScrapeId"] == config_id
    doc = store.recurring[config_id]
    assert doc["lastRun"] == NOW_MS
    assert doc["scheduledFunctionId"] == "timer-2"
    # The fired handle is not cancelled again.
    assert timers.cancelled == []


@pytest.mark.asyncio
async def test_execute_with_stale_handle_is_a_no_op(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)
    await controller.update(config_id, "user_1", hour=10)

    assert await controller.execute(config_id, "timer-1") is None

    assert store.started_scrapes == []
    assert store.recurring[config_id]["scheduledFunctionId"] == "timer-2"
    assert "lastRun" not in store.recurring[config_id]


@pytest.mark.asyncio
async def test_execute_disabled_or_deleted_is_a_no_op(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)
    await controller.toggle(config_id, "user_1", False)

    assert await controller.execute(config_id) is None
    assert await controller.execute("missing") is None
    assert store.started_scrapes == []
    assert len(timers.armed) == 1


@pytest.mark.asyncio
async def test_execute_rearms_even_when_scrape_start_fails(recording_timers, monkeypatch):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    async def broken_start(config, user_email=None):
        raise RuntimeError("scraper unavailable")

    monkeypatch.setattr(store, "start_recurring_scrape", broken_start)

    assert await controller.execute(config_id, "timer-1") is None
    assert store.recurring[config_id]["scheduledFunctionId"] == "timer-2"
    assert store.recurring[config_id]["lastRun"] == NOW_MS


@pytest.mark.asyncio
async def test_toggle_email_notifications_keeps_other_settings(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)
    store.recurring[config_id]["emailSettings"]["delayMinutes"] = 15

    await controller.toggle_email_notifications(config_id, "user_1", False)

    assert store.recurring[config_id]["emailSettings"] == {"enabled": False, "timing": "auto", "delayMinutes": 15}
    assert timers.cancelled == []


def test_legacy_digest_flag_resolves_email_settings():
    config = RecurringConfigRecord.model_validate(
        {"_id": "r1", "userId": "u", "frequency": "daily", "hour": 9, "minute": 0, "digestEnabled": False}
    )
    assert config.resolved_email_settings().enabled is False


@pytest.mark.asyncio
async def test_execute_recurring_scrape_activity(memory_store, recording_timers):
    controller = RecurringScrapeController(memory_store, recording_timers, now=lambda: NOW, tz_name="UTC")
    config_id = await _create_daily(controller)

    scrape_id = await acts.execute_recurring_scrape(config_id, "timer-1")

    assert memory_store.started_scrapes == [scrape_id]
    assert memory_store.recurring[config_id]["scheduledFunctionId"] == "timer-2"


@pytest.mark.asyncio
async def test_execute_delays_auto_email_after_scrape_start(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller, user_email="me@example.com")

    scrape_id = await controller.execute(config_id, "timer-1")

    # Scoring itself does not mail; the summary goes out after the delay.
    assert "userEmail" not in store.scrapes[scrape_id]
    assert timers.notifications == [
        {"handle": "email-1", "delay_ms": 5 * 60_000, "scrape_id": scrape_id, "user_email": "me@example.com"}
    ]
    assert store.recurring[config_id]["scheduledFunctionId"] == "timer-2"


@pytest.mark.asyncio
async def test_execute_with_zero_delay_hands_email_to_scoring(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(
        controller,
        user_email="me@example.com",
        email_settings=EmailSettings(delay_minutes=0),
    )

    scrape_id = await controller.execute(config_id, "timer-1")

    assert store.scrapes[scrape_id]["userEmail"] == "me@example.com"
    assert timers.notifications == []


@pytest.mark.asyncio
async def test_execute_with_email_disabled_sends_nothing(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(
        controller,
        user_email="me@example.com",
        email_settings=EmailSettings(enabled=False),
    )

    scrape_id = await controller.execute(config_id, "timer-1")

    assert scrape_id is not None
    assert "userEmail" not in store.scrapes[scrape_id]
    assert timers.notifications == []


@pytest.mark.asyncio
async def test_execute_schedules_manual_email_for_later_today(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(
        controller,
        user_email="me@example.com",
        email_settings=EmailSettings(timing="manual", manual_time=ManualTime(hour=18, minute=30)),
    )

    scrape_id = await controller.execute(config_id, "timer-1")

    assert timers.notifications[0]["scrape_id"] == scrape_id
    assert timers.notifications[0]["delay_ms"] == _ms(2024, 5, 14, 18, 30) - NOW_MS


@pytest.mark.asyncio
async def test_execute_skips_manual_email_once_the_time_has_passed(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(
        controller,
        user_email="me@example.com",
        email_settings=EmailSettings(timing="manual", manual_time=ManualTime(hour=8, minute=0)),
    )

    scrape_id = await controller.execute(config_id, "timer-1")

    assert "userEmail" not in store.scrapes[scrape_id]
    assert timers.notifications == []


@pytest.mark.asyncio
async def test_execute_falls_back_to_account_email_and_remembers_it(recording_timers):
    controller, store, timers = _controller(recording_timers)
    store.user_emails["user_1"] = "account@example.com"
    config_id = await _create_daily(controller)

    scrape_id = await controller.execute(config_id, "timer-1")

    assert store.recurring[config_id]["userEmail"] == "account@example.com"
    assert timers.notifications[0]["user_email"] == "account@example.com"
    assert timers.notifications[0]["scrape_id"] == scrape_id


@pytest.mark.asyncio
async def test_execute_without_any_email_runs_silently(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)

    scrape_id = await controller.execute(config_id, "timer-1")

    assert store.started_scrapes == [scrape_id]
    assert "userEmail" not in store.recurring[config_id]
    assert timers.notifications == []


@pytest.mark.asyncio
async def test_disabling_config_without_live_timer_clears_next_run(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)
    # The timer already fired and nothing re-armed it.
    store.recurring[config_id]["scheduledFunctionId"] = None

    await controller.toggle(config_id, "user_1", False)

    doc = store.recurring[config_id]
    assert doc["enabled"] is False
    assert doc["nextRun"] is None
    assert timers.cancelled == []


@pytest.mark.asyncio
async def test_renaming_disabled_config_keeps_it_unscheduled(recording_timers):
    controller, store, timers = _controller(recording_timers)
    config_id = await _create_daily(controller)
    await controller.toggle(config_id, "user_1", False)
    store.recurring[config_id]["nextRun"] = NOW_MS

    await controller.update(config_id, "user_1", name="Renamed")

    doc = store.recurring[config_id]
    assert doc["name"] == "Renamed"
    assert doc["nextRun"] is None
    assert len(timers.armed) == 1
