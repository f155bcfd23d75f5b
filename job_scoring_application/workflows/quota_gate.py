from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from ..components.models import QuotaStatus, UsageCounter
from ..config import runtime_config
from ..constants import QuotaScope
from ..services.store import ScoringStore, UsageUpdate
from .exceptions import QuotaConflictWorkflowError, QuotaExceededWorkflowError

logger = logging.getLogger("temporal.worker.quota")


def daily_key(now: datetime) -> str:
    return f"daily:{now.astimezone(timezone.utc).strftime('%Y-%m-%d')}"


def monthly_key(now: datetime) -> str:
    return f"monthly:{now.astimezone(timezone.utc).strftime('%Y-%m')}"


def next_daily_reset(now: datetime) -> datetime:
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today + timedelta(days=1)


def next_monthly_reset(now: datetime) -> datetime:
    current = now.astimezone(timezone.utc)
    if current.month == 12:
        return datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@dataclass(frozen=True)
class QuotaLimits:
    daily: int
    monthly: int


class QuotaGate:
    """Per-user daily/monthly cap on model calls.

    ``check_and_increment`` reads both buckets with their versions and commits
    both increments in one versioned write; a concurrent writer makes the
    commit fail and the gate re-reads until the call is admitted or rejected.
    A rejection never writes anything.
    """

    def __init__(self, store: ScoringStore, *, max_attempts: Optional[int] = None) -> None:
        self._store = store
        self._max_attempts = max_attempts or runtime_config.quota_commit_max_attempts

    async def limits_for(self, user_id: str) -> QuotaLimits:
        overrides = await self._store.get_user_limits(user_id)
        daily = runtime_config.default_daily_ai_limit
        monthly = runtime_config.default_monthly_ai_limit
        if overrides is not None:
            if overrides.daily_limit is not None:
                daily = overrides.daily_limit
            if overrides.monthly_limit is not None:
                monthly = overrides.monthly_limit
        return QuotaLimits(daily=daily, monthly=monthly)

    async def _read(self, user_id: str, now: datetime, limits: QuotaLimits) -> Tuple[UsageCounter, UsageCounter]:
        day_key, month_key = daily_key(now), monthly_key(now)
        daily = await self._store.get_usage(user_id, day_key)
        monthly = await self._store.get_usage(user_id, month_key)
        return (
            UsageCounter(
                key=day_key,
                used=daily.used if daily else 0,
                limit=limits.daily,
                version=daily.version if daily else 0,
            ),
            UsageCounter(
                key=month_key,
                used=monthly.used if monthly else 0,
                limit=limits.monthly,
                version=monthly.version if monthly else 0,
            ),
        )

    async def check_and_increment(
        self,
        user_id: str,
        amount: int = 1,
        *,
        now: Optional[datetime] = None,
    ) -> QuotaStatus:
        if amount < 1:
            raise ValueError("amount must be positive")
        now = now or datetime.now(timezone.utc)
        limits = await self.limits_for(user_id)

        # A lost commit means another caller committed first, so every retry
        # follows real progress and the loop ends once the quota is used up.
        attempt = 0
        while True:
            attempt += 1
            daily, monthly = await self._read(user_id, now, limits)
            if daily.used + amount > daily.limit:
                raise QuotaExceededWorkflowError(
                    f"Daily AI usage limit exceeded. Current: {daily.used}, Limit: {daily.limit}, Requested: {amount}",
                    scope=QuotaScope.DAILY,
                )
            if monthly.used + amount > monthly.limit:
                raise QuotaExceededWorkflowError(
                    f"Monthly AI usage limit exceeded. Current: {monthly.used}, "
                    f"Limit: {monthly.limit}, Requested: {amount}",
                    scope=QuotaScope.MONTHLY,
                )

            committed = await self._store.commit_usage(
                user_id,
                [
                    UsageUpdate(daily.key, daily.used + amount, daily.limit, daily.version),
                    UsageUpdate(monthly.key, monthly.used + amount, monthly.limit, monthly.version),
                ],
            )
            if committed:
                daily = daily.model_copy(update={"used": daily.used + amount})
                monthly = monthly.model_copy(update={"used": monthly.used + amount})
                return self._status(daily, monthly, now)
            logger.debug("Usage commit conflict user_id=%s attempt=%s", user_id, attempt)

    async def remaining(self, user_id: str, *, now: Optional[datetime] = None) -> QuotaStatus:
        now = now or datetime.now(timezone.utc)
        daily, monthly = await self._read(user_id, now, await self.limits_for(user_id))
        return self._status(daily, monthly, now)

    async def reset_daily_usage(self, user_id: str, *, now: Optional[datetime] = None) -> None:
        """Admin: zero today's bucket so the user can score again before midnight UTC."""

        now = now or datetime.now(timezone.utc)
        limits = await self.limits_for(user_id)
        for _ in range(self._max_attempts):
            daily, _monthly = await self._read(user_id, now, limits)
            if await self._store.commit_usage(user_id, [UsageUpdate(daily.key, 0, daily.limit, daily.version)]):
                logger.info("Reset daily AI usage user_id=%s key=%s", user_id, daily.key)
                return
        raise QuotaConflictWorkflowError(f"Could not reset daily AI usage for user {user_id}")

    @staticmethod
    def _status(daily: UsageCounter, monthly: UsageCounter, now: datetime) -> QuotaStatus:
        daily_reset = next_daily_reset(now)
        monthly_reset = next_monthly_reset(now)
        hours = math.ceil((daily_reset - now).total_seconds() / 3600)
        days = math.ceil((monthly_reset - now).total_seconds() / 86400)
        return QuotaStatus(
            daily_used=daily.used,
            daily_limit=daily.limit,
            daily_remaining=daily.remaining(),
            monthly_used=monthly.used,
            monthly_limit=monthly.limit,
            monthly_remaining=monthly.remaining(),
            daily_reset_at=_epoch_ms(daily_reset),
            monthly_reset_at=_epoch_ms(monthly_reset),
            daily_resets_in=f"Resets in {hours}h",
            monthly_resets_in=f"Resets in {days}d",
        )
