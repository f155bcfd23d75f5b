from .base import RetryableWorkflowError


class UpstreamModelWorkflowError(RetryableWorkflowError):
    """Scoring model request failed or returned an unusable response."""

    pass


class ScoreParseWorkflowError(UpstreamModelWorkflowError):
    """Model output could not be repaired into a valid score object."""

    def __init__(self, message: str, *, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text
