from .base import NonRetryableWorkflowError


class ScheduleValidationWorkflowError(NonRetryableWorkflowError):
    """Recurring schedule fields are missing or out of range."""

    pass
