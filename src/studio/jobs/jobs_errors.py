"""Domain-specific exceptions for the job pipeline."""


class JobError(Exception):
    """Base class for job-related errors."""


class JobValidationError(JobError):
    """Raised when the tool is unknown or required request fields are missing."""


class InsufficientCreditsError(JobError):
    """Raised when the user balance does not cover the tool cost."""

    def __init__(self, message: str, *, remaining: int, cost: int) -> None:
        super().__init__(message)
        self.remaining = remaining
        self.cost = cost


class RateLimitExceededError(JobError):
    """Raised when a session already started the maximum heavy jobs this hour."""

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class JobNotFoundError(JobError):
    """Raised when a job id cannot be resolved."""


class JobStateError(JobError):
    """Raised when an operation is not allowed in the job's current state."""


class UnauthorizedWebhookError(JobError):
    """Raised when a webhook signature is missing or does not match."""


class ProviderUnavailableError(JobError, ValueError):
    """Raised when a vendor adapter cannot be constructed."""


class ProviderExecutionError(JobError):
    """Raised when a provider call fails or returns an unusable result."""


class ProviderTimeoutError(ProviderExecutionError):
    """Raised when polling exhausts its attempts without a terminal status."""


class ProviderJobNotFoundError(ProviderExecutionError):
    """Raised by providers asked about an id they do not know."""
