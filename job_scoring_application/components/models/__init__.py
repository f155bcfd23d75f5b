from .records import (
    EmailSettings,
    JobRecord,
    ManualTime,
    QuotaStatus,
    RecurringConfigRecord,
    ScrapeRecord,
    UsageCounter,
    UserLimits,
)
from .scoring import (
    JobScoringResult,
    PartialJobScore,
    PartialRequirementCheck,
    RequirementCheck,
    StreamEvent,
)

__all__ = [
    "EmailSettings",
    "JobRecord",
    "ManualTime",
    "QuotaStatus",
    "RecurringConfigRecord",
    "ScrapeRecord",
    "UsageCounter",
    "UserLimits",
    "JobScoringResult",
    "PartialJobScore",
    "PartialRequirementCheck",
    "RequirementCheck",
    "StreamEvent",
]
