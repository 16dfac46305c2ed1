"""
Error taxonomy for scorefeed.

Transient upstream failures are absorbed as low as possible (retries in the
coordinator, stale/fallback data in the origin service). Only
NoDataAvailable and InvalidFilter are meant to reach an end caller as hard
failures.
"""

from __future__ import annotations

from typing import Optional


class ScoreFeedError(Exception):
    """Base class for all scorefeed errors."""


class UpstreamError(ScoreFeedError):
    """
    Raised when a single call to the upstream scraping service fails.

    retryable=False marks failures another attempt cannot fix (a key the
    upstream does not serve); the coordinator gives up on them at once.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class UpstreamTimeout(ScoreFeedError):
    """One upstream attempt exceeded the configured timeout. Retryable."""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Upstream fetch for '{key}' timed out after {timeout}s")
        self.key = key
        self.timeout = timeout


class UpstreamUnavailable(ScoreFeedError):
    """All attempts for a key failed."""

    def __init__(
        self,
        key: str,
        attempts: Optional[int] = None,
        last_error: Optional[BaseException] = None,
    ):
        message = f"Upstream unavailable for '{key}'"
        if attempts is not None:
            message = f"{message} after {attempts} attempt(s)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.key = key
        self.attempts = attempts
        self.last_error = last_error


class NoDataAvailable(ScoreFeedError):
    """No fresh data, no cached record and no fallback for a key."""

    def __init__(self, key: str):
        super().__init__(f"No data available for '{key}'")
        self.key = key


class InvalidFilter(ScoreFeedError):
    """A dataset key carries a filter name or value the dataset does not accept."""

    def __init__(self, key: str, message: str):
        super().__init__(f"Invalid filter in '{key}': {message}")
        self.key = key
        self.reason = message


class PartialForceRefreshFailure(ScoreFeedError):
    """One or more keys failed the origin phase of a force refresh."""

    def __init__(self, per_key_errors: dict[str, Exception]):
        keys = ", ".join(sorted(per_key_errors))
        super().__init__(f"Force refresh failed for: {keys}")
        self.per_key_errors = per_key_errors


class OriginError(ScoreFeedError):
    """Raised when the consumer tier cannot talk to the origin API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
