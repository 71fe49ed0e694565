"""Exception hierarchy for the dispatch gateway.

Adapters raise ``ProviderError`` subclasses tagged with a ``FailureKind``;
the executor turns those into retry, fallback or abort decisions and
surfaces a single ``DispatchError`` to the caller.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx

from llm_conductor.gateway.types import ProviderAttempt


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"  # Cool the provider down, move on
    TRANSIENT = "transient"  # Retry the same provider with backoff
    FATAL = "fatal"  # Abort the whole request


class ConfigurationError(Exception):
    """Raised when a provider cannot be constructed (e.g. missing credential)."""


class ProviderError(Exception):
    """Base class for failures reported by a vendor adapter."""

    kind: FailureKind = FailureKind.FATAL

    def __init__(self, message: str, provider: str = "", status_code: int = 0, error_code: str = ""):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.error_code = error_code


class RateLimitedError(ProviderError):
    kind = FailureKind.RATE_LIMITED

    def __init__(self, message: str, provider: str = "", status_code: int = 429, retry_after: float | None = None):
        super().__init__(message, provider=provider, status_code=status_code, error_code="rate_limited")
        self.retry_after = retry_after


class TransientProviderError(ProviderError):
    kind = FailureKind.TRANSIENT


class FatalProviderError(ProviderError):
    kind = FailureKind.FATAL


# Statuses worth retrying on the same provider
_TRANSIENT_STATUSES = frozenset({408, 409, 425, 500, 502, 503, 504, 529})


def classify_error(exc: BaseException) -> FailureKind:
    """Map an exception raised by ``generate`` to a FailureKind.

    Tagged errors carry their own kind; untagged ones are classified by
    type and HTTP status only.
    """
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify_status(status_code: int) -> FailureKind:
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code in _TRANSIENT_STATUSES or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


class DispatchError(Exception):
    """Terminal failure of a request, with one entry per provider tried."""

    def __init__(self, message: str, attempts: list[ProviderAttempt] | None = None):
        super().__init__(message)
        self.message = message
        self.attempts: list[ProviderAttempt] = list(attempts or [])

    @property
    def providers_tried(self) -> list[str]:
        return [a.provider for a in self.attempts]

    def __str__(self) -> str:
        if not self.attempts:
            return self.message
        details = "; ".join(a.describe() for a in self.attempts)
        return f"{self.message} Tried: {details}"


class ProvidersExhaustedError(DispatchError):
    """No eligible provider remained, or the provider-attempt cap was hit."""


class DispatchAbortedError(DispatchError):
    """A provider raised a fatal error; no retry or fallback was attempted."""

    def __init__(self, message: str, provider: str, attempts: list[ProviderAttempt] | None = None):
        super().__init__(message, attempts)
        self.provider = provider
