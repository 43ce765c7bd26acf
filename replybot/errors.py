from typing import Optional


class ReplyBotError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ReplyBotError):
    """Message content is empty or has an unrecognized shape."""


class ConfigurationError(ReplyBotError):
    """A required timing/limit setting is missing at startup."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required settings: {', '.join(missing)}")


class AdmissionRejected(ReplyBotError):
    def __init__(self, active: int, capacity: int):
        self.active = active
        self.capacity = capacity
        super().__init__(f"Concurrency limit reached ({active}/{capacity})")


class AgentApiError(ReplyBotError):
    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class RateLimitError(AgentApiError):
    def __init__(self, retry_after: float, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message or f"Agent API rate limited, retry after {retry_after}s", status_code=429)


class NonRetryableApiError(AgentApiError):
    """400/401/403 and unsuccessful envelopes: retrying will not help."""


class TransientError(AgentApiError):
    """Network error, timeout or 5xx that survived every retry."""


class EmptyReplyError(AgentApiError):
    """The agent answered but produced no assistant text."""
