"""Exception hierarchy for llm-relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all llm-relay errors."""


class ConfigurationError(RelayError):
    """A required configuration item is missing or invalid.

    Raised before any network attempt is made.
    """


class AdapterNotFoundError(ConfigurationError):
    """No adapter is registered for the requested provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No adapter registered for {provider}")


class UpstreamHTTPError(RelayError):
    """The upstream endpoint answered with a non-2xx status."""

    def __init__(self, status: int, reason: str = "", body: str = "") -> None:
        self.status = status
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status}: {reason} - {body}")


class RetryExhaustedError(RelayError):
    """Every attempt of a retryable request failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        message = str(last_error) if last_error else ""
        super().__init__(
            f"Request failed after {attempts} attempts: "
            f"{message or 'retry limit reached'}"
        )


class SSEBufferOverflowError(RelayError):
    """The SSE parser buffer grew past its configured limit."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"Buffer overflow: {size} bytes exceeds limit of {limit}"
        )


class StreamError(RelayError):
    """Terminal failure of one response stream."""
