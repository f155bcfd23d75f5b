from .base import WorkflowError, RetryableWorkflowError, NonRetryableWorkflowError
from .access import AccessDeniedWorkflowError, InvalidScrapeStateWorkflowError
from .quota import QuotaConflictWorkflowError, QuotaExceededWorkflowError
from .upstream import ScoreParseWorkflowError, UpstreamModelWorkflowError
from .validation import ScheduleValidationWorkflowError

__all__ = [
    "WorkflowError",
    "RetryableWorkflowError",
    "NonRetryableWorkflowError",
    "AccessDeniedWorkflowError",
    "InvalidScrapeStateWorkflowError",
    "QuotaConflictWorkflowError",
    "QuotaExceededWorkflowError",
    "ScoreParseWorkflowError",
    "UpstreamModelWorkflowError",
    "ScheduleValidationWorkflowError",
]
