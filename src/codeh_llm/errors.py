"""Error hierarchy for LLM calls.

Each error type carries retryability information so that
``retry_with_policy`` (and callers above the orchestrator) can decide
whether another attempt makes sense. The orchestrator never catches these:
an ``LLMError`` ends the orchestration attempt.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base error for all LLM call failures."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class ProviderError(LLMError):
    """Error reported by the provider API."""


class AuthenticationError(ProviderError):
    """401: Invalid or missing credentials. Not retryable."""


class InvalidRequestError(ProviderError):
    """Bad request parameters. Not retryable."""


class RateLimitError(ProviderError):
    """429: Rate limited. Retryable, honouring ``retry_after`` when known."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code, retryable=True)
        self.retry_after = retry_after


class ServerError(ProviderError):
    """5xx: Provider server error. Retryable."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = 500,
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code, retryable=True)


class NetworkError(LLMError):
    """Connection-level failure. Retryable."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider, retryable=True)


class RequestTimeoutError(LLMError):
    """The provider did not answer in time. Retryable."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message, provider=provider, retryable=True)


class StreamError(LLMError):
    """A stream was interrupted.

    Retryable only while no chunk has reached the caller yet.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, provider=provider, retryable=retryable)


class AbortError(LLMError):
    """Work cancelled through an abort signal. Not retryable."""
