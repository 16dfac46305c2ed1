"""
Force refresh across both cache tiers.

Three ordered phases for a batch of keys:
  1. clear the consumer snapshots locally (no network),
  2. invalidate and refetch each key at the origin, collecting failures per
     key,
  3. revalidate the consumer snapshots through the refreshed origin.

Phase 3 runs for every key, including those that failed phase 2, so the
consumer always ends up showing whatever the origin now serves. Keys with
no consumer subscription are released once phase 3 is done.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from scorefeed.consumer import ConsumerCache
from scorefeed.datasets import Refresher
from scorefeed.errors import PartialForceRefreshFailure, UpstreamUnavailable
from scorefeed.models import DataSource
from scorefeed.origin import ResolveResult

logger = logging.getLogger(__name__)


@dataclass
class ForceRefreshResult:
    """Outcome of one orchestrated refresh."""

    success: bool
    per_key_errors: dict[str, Exception] = field(default_factory=dict)
    results: dict[str, ResolveResult] = field(default_factory=dict)

    def raise_for_failure(self) -> None:
        if not self.success:
            raise PartialForceRefreshFailure(self.per_key_errors)


class ForceRefreshOrchestrator:
    """Runs the clear -> origin refetch -> revalidate protocol."""

    def __init__(
        self,
        consumer: ConsumerCache,
        refresher: Refresher,
        concurrent: bool = True,
    ) -> None:
        self._consumer = consumer
        self._refresher = refresher
        self._concurrent = concurrent

    async def run(self, keys: Iterable[str]) -> ForceRefreshResult:
        keys = list(dict.fromkeys(keys))
        logger.info("Force refresh started for %s", ", ".join(keys))

        # Phase 1: local clear
        for key in keys:
            await self._consumer.mutate(key, None, revalidate=False)

        # Phase 2: origin invalidation + refetch
        if self._concurrent:
            outcomes = await asyncio.gather(*(self._refresh_one(key) for key in keys))
        else:
            outcomes = [await self._refresh_one(key) for key in keys]

        result = ForceRefreshResult(success=True)
        for key, resolved, error in outcomes:
            if error is not None:
                result.per_key_errors[key] = error
            if resolved is not None:
                result.results[key] = resolved
        result.success = not result.per_key_errors

        # Phase 3: consumer revalidation
        await asyncio.gather(
            *(self._consumer.mutate(key, None, revalidate=True) for key in keys)
        )
        for key in keys:
            self._consumer.release(key)

        if result.success:
            logger.info("Force refresh succeeded for %d key(s)", len(keys))
        else:
            logger.warning(
                "Force refresh failed for %s",
                ", ".join(sorted(result.per_key_errors)),
            )
        return result

    async def _refresh_one(
        self, key: str
    ) -> tuple[str, Optional[ResolveResult], Optional[Exception]]:
        try:
            resolved = await self._refresher(key)
        except Exception as exc:
            logger.warning("Origin refresh failed for %s: %s", key, exc)
            return key, None, exc

        if resolved.source != DataSource.fresh:
            # The refetch itself failed; the origin fell back to other data.
            return key, resolved, UpstreamUnavailable(key)
        return key, resolved, None
