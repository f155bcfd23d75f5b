from .base import NonRetryableWorkflowError


class AccessDeniedWorkflowError(NonRetryableWorkflowError):
    """Caller does not own the scrape or recurring config."""

    pass


class InvalidScrapeStateWorkflowError(NonRetryableWorkflowError):
    """Operation is not valid for the scrape's current status."""

    pass
