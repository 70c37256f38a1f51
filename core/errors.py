# core/errors.py
"""Exception types shared by the generation pipeline."""

from __future__ import annotations


class ProviderError(Exception):
    """A text-generation call failed at the provider boundary."""

    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class RateLimitError(ProviderError):
    retryable = True


class AuthenticationError(ProviderError):
    retryable = False


class ProviderUnavailableError(ProviderError):
    retryable = True


class ContentFilteredError(ProviderError):
    retryable = False


class PhaseFailure(Exception):
    """Raised inside a coordinator phase when the phase cannot produce output."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(f"{phase}: {message}")
        self.phase = phase
        self.message = message
