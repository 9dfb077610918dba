"""
Remote Errors
=============

Failure taxonomy for calls to hosted models.

Only rate limiting (HTTP 429) is retryable. Every other failure is
terminal for the attempt; the caller decides what to do next.
"""

from typing import Optional


class RemoteGenerationError(Exception):
    """Raised when a remote model call fails."""

    retryable: bool = False

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitError(RemoteGenerationError):
    """Raised when the service rejects a call with HTTP 429."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status=429)


class UnexpectedOutputError(RemoteGenerationError):
    """Raised when a model returns a response shape we cannot read."""
    pass


class ServiceNotConfiguredError(RemoteGenerationError):
    """Raised when the backend is missing required credentials."""
    pass


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    return None


def is_rate_limited(exc: BaseException) -> bool:
    """True if the error indicates an HTTP 429 response."""
    if isinstance(exc, RateLimitError):
        return True
    if _status_of(exc) == 429:
        return True
    return "429" in str(exc)


def classify_error(exc: BaseException) -> RemoteGenerationError:
    """
    Normalize any failure into the remote error taxonomy.

    Returns:
        RateLimitError for 429s, the original error if it is already a
        RemoteGenerationError, otherwise a terminal RemoteGenerationError.
    """
    if is_rate_limited(exc):
        if isinstance(exc, RateLimitError):
            return exc
        return RateLimitError(str(exc) or "Rate limited (429)")
    if isinstance(exc, RemoteGenerationError):
        return exc
    return RemoteGenerationError(
        f"{type(exc).__name__}: {exc}",
        status=_status_of(exc),
    )
