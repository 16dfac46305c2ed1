"""
Origin service: composes cache, fetch coordinator and fallback data.

Serving precedence for a key is fixed:
fresh cache -> fresh upstream fetch -> stale cache -> fallback -> error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from scorefeed.cache import CacheStore
from scorefeed.coordinator import FetchCoordinator, FetchFn
from scorefeed.conditional import content_hash
from scorefeed.errors import NoDataAvailable, UpstreamUnavailable
from scorefeed.models import DataSource, WarningDetail, WarningKind

logger = logging.getLogger(__name__)

FallbackFn = Callable[[str], Optional[Any]]


@dataclass(frozen=True)
class ResolveResult:
    """A payload and where it came from."""

    key: str
    payload: Any
    source: DataSource
    produced_at: float
    etag: str
    warning: Optional[WarningDetail] = None


class OriginService:
    """
    Request-serving facade for the origin tier.

    Owns one CacheStore and one FetchCoordinator. Upstream and fallback
    capabilities are passed per call so the same service serves every
    dataset.
    """

    def __init__(self, cache: CacheStore, coordinator: FetchCoordinator) -> None:
        self._cache = cache
        self._coordinator = coordinator
        self._served = {source.value: 0 for source in DataSource}

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def coordinator(self) -> FetchCoordinator:
        return self._coordinator

    async def resolve(
        self,
        key: str,
        ttl_seconds: int,
        fetch_fn: FetchFn,
        fallback_fn: FallbackFn,
        force_refresh: bool = False,
    ) -> ResolveResult:
        """
        Serve key following the fallback chain.

        Raises:
            NoDataAvailable: upstream failed, nothing cached, no fallback.
        """
        # 1. Force refresh drops the record first
        if force_refresh:
            logger.info("Force refresh: %s", key)
            self._cache.invalidate(key)
        else:
            # 2. Fresh cache hit
            record = self._cache.get(key)
            if record is not None and not record.is_expired(self._cache.now()):
                logger.debug("Serving cached %s", key)
                return self._result(key, record.payload, DataSource.cache, record.produced_at)

        # 3. Fetch from upstream (coalesced)
        try:
            payload = await self._coordinator.fetch_or_join(key, fetch_fn)
        except UpstreamUnavailable as exc:
            logger.warning("Upstream error for %s: %s", key, exc)
            return self._handle_upstream_error(key, fallback_fn)

        record = self._cache.set(key, payload, ttl_seconds)
        return self._result(key, payload, DataSource.fresh, record.produced_at)

    async def refresh(self, key: str, ttl_seconds: int, fetch_fn: FetchFn) -> bool:
        """
        Refetch key out-of-band without dropping the current record.

        Returns True if the cache was updated. Failures are logged; the
        existing record, if any, keeps being served.
        """
        try:
            payload = await self._coordinator.fetch_or_join(key, fetch_fn)
        except UpstreamUnavailable as exc:
            logger.warning("Background refresh failed for %s: %s", key, exc)
            return False
        self._cache.set(key, payload, ttl_seconds)
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self._cache.stats(),
            "coordinator": self._coordinator.stats(),
            "served": dict(self._served),
        }

    def _handle_upstream_error(self, key: str, fallback_fn: FallbackFn) -> ResolveResult:
        """Upstream failed: try the stale record, then fallback data."""
        stale = self._cache.get(key)
        if stale is not None:
            logger.info("Serving stale cached %s", key)
            return self._result(
                key,
                stale.payload,
                DataSource.stale_cache,
                stale.produced_at,
                self._warning(WarningKind.upstream_unavailable, key, "upstream fetch failed"),
            )

        fallback = fallback_fn(key)
        if fallback is None:
            logger.error("No data available for %s", key)
            raise NoDataAvailable(key)

        logger.info("Serving fallback data for %s", key)
        return self._result(
            key,
            fallback,
            DataSource.fallback,
            self._cache.now(),
            self._warning(
                WarningKind.fallback_data,
                key,
                "upstream fetch failed and nothing is cached, serving fallback data",
            ),
        )

    def _warning(self, kind: WarningKind, key: str, message: str) -> WarningDetail:
        return WarningDetail(
            kind=kind,
            key=key,
            timestamp=datetime.fromtimestamp(self._cache.now(), tz=timezone.utc),
            message=message,
        )

    def _result(
        self,
        key: str,
        payload: Any,
        source: DataSource,
        produced_at: float,
        warning: Optional[WarningDetail] = None,
    ) -> ResolveResult:
        self._served[source.value] += 1
        return ResolveResult(
            key=key,
            payload=payload,
            source=source,
            produced_at=produced_at,
            etag=content_hash(payload),
            warning=warning,
        )
