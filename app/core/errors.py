from __future__ import annotations

from enum import Enum


class BotError(Exception):
    """Base bot error."""


class UpstreamUnavailable(BotError):
    """Raised when an upstream API call failed and no fallback applies."""

    def __init__(self, message: str, provider: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class QuotaExceeded(UpstreamUnavailable):
    """Upstream refused the call for quota or credential reasons."""


class AssetNotFound(UpstreamUnavailable):
    """Upstream answered cleanly but holds no record for the requested id."""


class ResolutionFailed(BotError):
    """Raised when no resolution strategy could map a ticker."""

    def __init__(self, ticker: str) -> None:
        super().__init__(f"Could not resolve {ticker!r}")
        self.ticker = ticker


class NoDataAvailable(BotError):
    """Upstream answered successfully but with zero records."""


class ValidationError(BotError):
    """Raised for invalid user input."""


class ErrorKind(str, Enum):
    QUOTA = "quota"
    UNAVAILABLE = "unavailable"
    NO_DATA = "no_data"


QUOTA_STATUSES = frozenset({401, 403, 426, 429})


def error_kind(exc: BaseException) -> ErrorKind:
    if isinstance(exc, QuotaExceeded):
        return ErrorKind.QUOTA
    if isinstance(exc, (NoDataAvailable, AssetNotFound)):
        return ErrorKind.NO_DATA
    return ErrorKind.UNAVAILABLE
