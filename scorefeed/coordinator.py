"""
Fetch coalescing for the upstream data source.

When multiple concurrent callers ask for the same key, only one upstream
fetch runs and all callers share its result. The in-flight entry is
registered before the first await, so two callers arriving back to back
can never both start a fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from scorefeed.errors import UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[Any]]


@dataclass
class InFlightFetch:
    """Tracks an in-progress upstream fetch."""

    key: str
    future: asyncio.Task
    started_at: float = field(default_factory=time.monotonic)
    waiters: int = 1


class FetchCoordinator:
    """
    Ensures concurrent requests for the same key share one upstream fetch.

    Each fetch makes up to 1 + max_retries attempts, each raced against
    `timeout` seconds, with a fixed `retry_delay` between attempts. An
    error with `retryable = False` ends the fetch at once. When every
    attempt fails, all joined callers get UpstreamUnavailable.

    Usage:
        coordinator = FetchCoordinator(timeout=30.0, max_retries=2)
        payload = await coordinator.fetch_or_join("schedule", fetch_fn)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 5.0,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._in_flight: dict[str, InFlightFetch] = {}
        self._stats = {
            "upstream_calls": 0,
            "coalesced": 0,
            "failures": 0,
            "late_results_discarded": 0,
        }

    async def fetch_or_join(self, key: str, fetch_fn: FetchFn) -> Any:
        """
        Join the in-flight fetch for key, or start one.

        Raises:
            UpstreamUnavailable: all attempts failed.
        """
        entry = self._in_flight.get(key)
        if entry is not None:
            entry.waiters += 1
            self._stats["coalesced"] += 1
            logger.debug("Joining in-flight fetch for %s (waiters: %d)", key, entry.waiters)
        else:
            task = asyncio.ensure_future(self._fetch_with_retries(key, fetch_fn))
            entry = InFlightFetch(key=key, future=task)
            self._in_flight[key] = entry
            task.add_done_callback(lambda _t, e=entry: self._release(e))
            logger.debug("Initiating fetch for %s", key)

        # Shield so a cancelled caller never cancels the shared fetch.
        return await asyncio.shield(entry.future)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def active_requests(self) -> int:
        return len(self._in_flight)

    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "active_requests": len(self._in_flight),
            "active_keys": sorted(self._in_flight),
        }

    def _release(self, entry: InFlightFetch) -> None:
        if self._in_flight.get(entry.key) is entry:
            del self._in_flight[entry.key]
        # Mark the exception as retrieved when every waiter went away.
        if not entry.future.cancelled():
            entry.future.exception()

    async def _fetch_with_retries(self, key: str, fetch_fn: FetchFn) -> Any:
        attempts = self._max_retries + 1
        last_error: Optional[BaseException] = None

        attempt = 0
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(key, fetch_fn)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Fetch attempt %d/%d failed for %s: %s",
                    attempt,
                    attempts,
                    key,
                    exc,
                )
                if not getattr(exc, "retryable", True):
                    break
            if attempt < attempts and self._retry_delay > 0:
                await asyncio.sleep(self._retry_delay)

        self._stats["failures"] += 1
        logger.error("Upstream unavailable for %s after %d attempt(s)", key, attempt)
        raise UpstreamUnavailable(key, attempt, last_error)

    async def _attempt(self, key: str, fetch_fn: FetchFn) -> Any:
        """One upstream call raced against the timeout."""
        self._stats["upstream_calls"] += 1
        call = asyncio.ensure_future(fetch_fn(key))
        done, _ = await asyncio.wait({call}, timeout=self._timeout)
        if call in done:
            return call.result()

        # Leave the call running; its result is dropped when it lands.
        call.add_done_callback(lambda t: self._discard_late_result(key, t))
        raise UpstreamTimeout(key, self._timeout)

    def _discard_late_result(self, key: str, call: asyncio.Future) -> None:
        self._stats["late_results_discarded"] += 1
        if call.cancelled():
            return
        exc = call.exception()
        if exc is not None:
            logger.debug("Late upstream call for %s failed after timeout: %s", key, exc)
        else:
            logger.debug("Discarding late upstream result for %s", key)
