from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .classifier import ErrorReport


class ProviderError(Exception):
    """Base error for provider failures."""


class ConfigurationError(ProviderError):
    pass


class AuthenticationError(ProviderError):
    pass


class RateLimitError(ProviderError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class UpstreamProtocolError(ProviderError):
    """Unexpected upstream response shape or error status."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AssistantNotFoundError(UpstreamProtocolError):
    """The configured assistant does not exist for this API key."""


class CircuitBreakerOpenError(ProviderError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Upstream temporarily unavailable"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RequestTimeoutError(ProviderError):
    """Request deadline exceeded."""


class RunFailedError(ProviderError):
    """A run reached a terminal status other than completed."""

    def __init__(self, status: str, message: str | None = None):
        super().__init__(message or f"Run failed with status: {status}")
        self.status = status


class EmptyResponseError(ProviderError):
    pass


class PollTimeoutError(ProviderError, TimeoutError):
    def __init__(self, *, run_id: str, attempts: int, last_status: str | None):
        super().__init__(
            f"Run {run_id} still {last_status or 'pending'} after {attempts} status checks."
        )
        self.run_id = run_id
        self.attempts = attempts
        self.last_status = last_status


class GenerationError(Exception):
    """Typed failure surfaced to callers; wraps exactly one ErrorReport."""

    def __init__(self, report: ErrorReport):
        super().__init__(report.message)
        self.report = report
