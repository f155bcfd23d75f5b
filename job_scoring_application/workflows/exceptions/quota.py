from __future__ import annotations

from ...constants import QUOTA_EXCEEDED_ERROR_TYPE, QuotaScope
from .base import RetryableWorkflowError, WorkflowError


class QuotaExceededWorkflowError(WorkflowError):
    """Daily or monthly AI usage limit reached; never retried automatically."""

    def __init__(self, message: str, *, scope: QuotaScope | str) -> None:
        scope = QuotaScope(scope)
        # The scope rides in the failure details so it survives the activity boundary.
        super().__init__(message, retryable=False, type=QUOTA_EXCEEDED_ERROR_TYPE, details=[scope.value])
        self.scope = scope


class QuotaConflictWorkflowError(RetryableWorkflowError):
    """Usage counters kept changing underneath the gate; safe to retry."""

    pass
