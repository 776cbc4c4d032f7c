"""Provider errors and the retry classifier."""

from __future__ import annotations

from enum import StrEnum

import httpx


class ErrorClass(StrEnum):
    AUTH = "auth"
    NETWORK = "network"
    PROVIDER_4XX = "provider_4xx"
    PROVIDER_5XX = "provider_5xx"
    UNKNOWN = "unknown"


RETRYABLE_CLASSES = frozenset({ErrorClass.PROVIDER_5XX, ErrorClass.NETWORK, ErrorClass.UNKNOWN})


class ProviderError(Exception):
    """A delivery provider rejected or failed a call.

    Attributes:
        provider: Provider name (``twilio``, ``push_relay``, ``sms_mock``).
        status_code: HTTP status returned by the provider, if any.
        provider_code: Provider-specific error code, if any.
        error_class: Forces the classification when no status applies
            (simulated network failures).
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        provider_code: str | None = None,
        error_class: ErrorClass | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.provider_code = provider_code
        self.error_class = error_class
        super().__init__(message)


class ProviderConfigurationError(ProviderError):
    """Provider selected but credentials or endpoints are missing."""


def classify_status(status: int) -> ErrorClass:
    if status in (401, 403):
        return ErrorClass.AUTH
    if status in (408, 429):
        return ErrorClass.NETWORK
    if status >= 500:
        return ErrorClass.PROVIDER_5XX
    if status >= 400:
        return ErrorClass.PROVIDER_4XX
    return ErrorClass.UNKNOWN


def _classify_text(message: str) -> ErrorClass:
    text = message.lower()
    if any(token in text for token in ("401", "403", "unauthorized")):
        return ErrorClass.AUTH
    if any(
        token in text
        for token in ("network", "timed out", "timeout", "fetch", "408", "429", "rate limit")
    ):
        return ErrorClass.NETWORK
    if any(token in text for token in (" 5", "500", "502", "503")):
        return ErrorClass.PROVIDER_5XX
    if any(token in text for token in (" 4", "400", "404")):
        return ErrorClass.PROVIDER_4XX
    return ErrorClass.UNKNOWN


def classify_error(error: BaseException) -> ErrorClass:
    """Map a delivery failure onto an ``ErrorClass``.

    Explicit information wins: a forced class, then an HTTP status, then
    transport-level exception types. The message text is the last resort.
    """
    if isinstance(error, ProviderError):
        if error.error_class is not None:
            return error.error_class
        if error.status_code is not None:
            return classify_status(error.status_code)
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code)
    if isinstance(error, httpx.TimeoutException | httpx.TransportError | TimeoutError | ConnectionError):
        return ErrorClass.NETWORK
    return _classify_text(str(error))


def is_retryable(error_class: ErrorClass) -> bool:
    return error_class in RETRYABLE_CLASSES
