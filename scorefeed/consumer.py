"""
Consumer-side presentation cache.

Keeps the last value per key for presentation callers, revalidating it on
a polling timer and on focus/reconnect events. Every trigger goes through
maybe_revalidate(), which joins a load already in flight and skips keys
loaded within the subscription's dedup window.

The consumer never talks to the upstream. It reads through a loader bound
either to an in-process OriginService (datasets.origin_loader) or to the
origin HTTP API (client.OriginClient.load).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from scorefeed.datasets import Loader
from scorefeed.freshness import DataCategory, FreshnessClass, classify
from scorefeed.models import DataSource, WarningDetail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionPolicy:
    """Polling and revalidation settings for one subscription (seconds)."""

    refresh_interval: float = 30.0
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    deduping_interval: float = 5.0
    category: DataCategory = DataCategory.schedule


MATCHES_POLICY = SubscriptionPolicy(
    refresh_interval=15.0, deduping_interval=3.0, category=DataCategory.live
)
POINTS_TABLE_POLICY = SubscriptionPolicy(
    refresh_interval=60.0, deduping_interval=10.0, category=DataCategory.standings
)
SCHEDULE_POLICY = SubscriptionPolicy(
    refresh_interval=120.0,
    revalidate_on_focus=False,
    deduping_interval=30.0,
    category=DataCategory.schedule,
)


@dataclass(frozen=True)
class Snapshot:
    """What a presentation caller sees for one key."""

    key: str
    value: Any = None
    error: Optional[Exception] = None
    is_loading: bool = False
    freshness: FreshnessClass = FreshnessClass.old
    produced_at: Optional[float] = None
    source: Optional[DataSource] = None
    warning: Optional[WarningDetail] = None


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int
    key: str
    policy: SubscriptionPolicy


@dataclass
class ConsumerSubscription:
    """One (key, policy) pair; reference counted across handles."""

    key: str
    policy: SubscriptionPolicy
    refs: int = 0
    timer: Optional[asyncio.Task] = None


@dataclass
class _KeyState:
    key: str
    category: DataCategory
    value: Any = None
    error: Optional[Exception] = None
    produced_at: Optional[float] = None
    etag: Optional[str] = None
    source: Optional[DataSource] = None
    warning: Optional[WarningDetail] = None
    last_fetch_at: Optional[float] = None
    loading: Optional[asyncio.Task] = None
    # Bumped by local mutations; loads started before a bump are discarded.
    generation: int = 0


SnapshotListener = Callable[[Snapshot], None]


class ConsumerCache:
    """Per-key cache with polling, event revalidation and a dedup window."""

    def __init__(
        self,
        loader: Loader,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._loader = loader
        self._clock = clock
        self._states: dict[str, _KeyState] = {}
        self._subscriptions: dict[tuple[str, SubscriptionPolicy], ConsumerSubscription] = {}
        self._handles: dict[int, SubscriptionHandle] = {}
        self._ids = itertools.count(1)
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(
        self, key: str, policy: SubscriptionPolicy = SubscriptionPolicy()
    ) -> SubscriptionHandle:
        """Subscribe to key, loading it first if there is no value yet."""
        state = self._ensure_state(key)
        state.category = policy.category
        sub = self._subscriptions.get((key, policy))
        if sub is None:
            sub = ConsumerSubscription(key=key, policy=policy)
            self._subscriptions[(key, policy)] = sub
            if policy.refresh_interval > 0:
                sub.timer = asyncio.create_task(self._poll(sub))
        sub.refs += 1

        handle = SubscriptionHandle(id=next(self._ids), key=key, policy=policy)
        self._handles[handle.id] = handle

        if state.value is None:
            await self.maybe_revalidate(key, policy.deduping_interval)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a handle. Never cancels a load already in flight."""
        if self._handles.pop(handle.id, None) is None:
            return
        sub = self._subscriptions.get((handle.key, handle.policy))
        if sub is None:
            return
        sub.refs -= 1
        if sub.refs > 0:
            return

        del self._subscriptions[(handle.key, handle.policy)]
        if sub.timer is not None:
            sub.timer.cancel()
        if not any(key == handle.key for key, _ in self._subscriptions):
            self._states.pop(handle.key, None)
            logger.debug("Dropped consumer state for %s", handle.key)

    def subscription_count(self, key: str) -> int:
        return sum(
            sub.refs for (sub_key, _), sub in self._subscriptions.items() if sub_key == key
        )

    def keys(self) -> list[str]:
        """Keys the consumer currently holds state for."""
        return sorted(self._states)

    def release(self, key: str) -> bool:
        """
        Drop the state for key if nothing subscribes to it.

        mutate() and revalidate() create state for any key they touch;
        callers working on keys they never subscribed to release them
        afterwards. A key with a load in flight is kept.
        """
        state = self._states.get(key)
        if state is None or state.loading is not None or self.subscription_count(key) > 0:
            return False
        del self._states[key]
        logger.debug("Released consumer state for %s", key)
        return True

    def listen(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot-change listener. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def close(self) -> None:
        """Disarm every polling timer."""
        timers = [sub.timer for sub in self._subscriptions.values() if sub.timer]
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._subscriptions.clear()
        self._handles.clear()

    # ------------------------------------------------------------------
    # Reads and mutations
    # ------------------------------------------------------------------

    def get_snapshot(self, key: str) -> Snapshot:
        state = self._states.get(key)
        if state is None:
            return Snapshot(key=key)
        return Snapshot(
            key=key,
            value=state.value,
            error=state.error,
            is_loading=state.loading is not None,
            freshness=classify(state.produced_at, self._clock(), state.category),
            produced_at=state.produced_at,
            source=state.source,
            warning=state.warning,
        )

    async def mutate(
        self, key: str, value: Any = None, revalidate: bool = True
    ) -> Snapshot:
        """
        Change the local value for key.

        mutate(key, None, revalidate=False) clears the snapshot without a
        network call. mutate(key, None) revalidates immediately, ignoring
        the dedup window. A non-None value is stored locally first.
        """
        state = self._ensure_state(key)
        if value is not None or not revalidate:
            state.generation += 1
            state.value = value
            state.error = None
            state.etag = None
            state.source = None
            state.warning = None
            state.produced_at = self._clock() if value is not None else None
            self._notify(state)

        if revalidate:
            await self.revalidate(key)
        return self.get_snapshot(key)

    # ------------------------------------------------------------------
    # Revalidation triggers
    # ------------------------------------------------------------------

    async def maybe_revalidate(self, key: str, deduping_interval: float) -> bool:
        """
        Revalidate key unless a load completed within the dedup window.

        Joins a load already in flight. Returns True if a load was run or
        joined, False if suppressed.
        """
        state = self._states.get(key)
        if state is None:
            return False
        if state.loading is not None:
            await asyncio.shield(state.loading)
            return True
        if (
            state.last_fetch_at is not None
            and self._clock() - state.last_fetch_at < deduping_interval
        ):
            logger.debug("Revalidation of %s deduplicated", key)
            return False
        await self._run_load(state)
        return True

    async def revalidate(self, key: str) -> None:
        """Load key now, ignoring the dedup window."""
        state = self._ensure_state(key)
        if state.loading is not None:
            await asyncio.shield(state.loading)
        await self._run_load(state)

    async def focus(self) -> None:
        """Window focus event."""
        await self._revalidate_where(lambda policy: policy.revalidate_on_focus)

    async def reconnect(self) -> None:
        """Network reconnect event."""
        await self._revalidate_where(lambda policy: policy.revalidate_on_reconnect)

    async def _revalidate_where(self, predicate: Callable[[SubscriptionPolicy], bool]) -> None:
        windows: dict[str, float] = {}
        for (key, policy) in self._subscriptions:
            if predicate(policy):
                windows[key] = min(windows.get(key, policy.deduping_interval), policy.deduping_interval)
        await asyncio.gather(
            *(self.maybe_revalidate(key, window) for key, window in windows.items())
        )

    async def _poll(self, sub: ConsumerSubscription) -> None:
        while True:
            await asyncio.sleep(sub.policy.refresh_interval)
            try:
                await self.maybe_revalidate(sub.key, sub.policy.deduping_interval)
            except Exception:
                logger.exception("Polling revalidation failed for %s", sub.key)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _run_load(self, state: _KeyState) -> None:
        task = asyncio.create_task(self._load(state, state.generation))
        state.loading = task
        self._notify(state)
        try:
            await asyncio.shield(task)
        finally:
            if state.loading is task and task.done():
                state.loading = None

    async def _load(self, state: _KeyState, generation: int) -> None:
        try:
            result = await self._loader(state.key, state.etag)
        except Exception as exc:
            logger.warning("Load failed for %s: %s", state.key, exc)
            if generation == state.generation:
                state.error = exc
        else:
            if generation != state.generation:
                logger.debug("Discarding load for %s superseded by a mutation", state.key)
            elif result is not None:
                state.value = result.payload
                state.produced_at = result.produced_at
                state.etag = result.etag
                state.source = result.source
                state.warning = result.warning
                state.error = None
            else:
                state.error = None
        finally:
            state.last_fetch_at = self._clock()
            if state.loading is asyncio.current_task():
                state.loading = None
            self._notify(state)

    def _ensure_state(
        self, key: str, category: DataCategory = DataCategory.schedule
    ) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState(key=key, category=category)
            self._states[key] = state
        return state

    def _notify(self, state: _KeyState) -> None:
        if not self._listeners:
            return
        snapshot = self.get_snapshot(state.key)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed for %s", state.key)
