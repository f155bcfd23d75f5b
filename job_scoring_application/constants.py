from __future__ import annotations

from enum import StrEnum


class ScrapeStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SCORING = "scoring"
    SCORING_PAUSED = "scoring_paused"
    FAILED = "failed"


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class QuotaScope(StrEnum):
    DAILY = "daily"
    MONTHLY = "monthly"


# Appended to the explanation of a job whose score was reused from a duplicate.
COPIED_SCORE_MARKER = " (Score copied from similar job)"

MIN_SCORE = 1
MAX_SCORE = 10

# Descriptions at or below this length are too thin to fingerprint on.
FINGERPRINT_MIN_DESCRIPTION_CHARS = 10
FINGERPRINT_DESCRIPTION_CHARS = 500

MAX_JOB_TEXT_CHARS = 10_000

QUOTA_EXCEEDED_ERROR_TYPE = "QuotaExceeded"

DAILY_LIMIT_STILL_EXCEEDED_MESSAGE = (
    "Daily AI usage limit still exceeded. Please try again tomorrow."
)
MONTHLY_LIMIT_STILL_EXCEEDED_MESSAGE = (
    "Monthly AI usage limit still exceeded. Please upgrade your plan or wait for next month."
)

SCHEDULE_FIELDS = frozenset({"frequency", "day_of_week", "day_of_month", "hour", "minute", "enabled"})

# Recorded on a scrape parked in scoring_paused; {scope} is "daily" or "monthly".
QUOTA_PAUSE_MESSAGE = "Scoring paused: {scope} AI usage limit reached"
