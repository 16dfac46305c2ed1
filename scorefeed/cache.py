"""
Origin-side in-memory TTL store.

Generic cache -- not dataset-specific. Stores one record per string key.
Expired records are kept and still returned by get(); expiry only decides
how the origin service serves them. Records leave the store through
invalidate(), clear() or capacity eviction (oldest produced_at first).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from scorefeed.conditional import content_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheRecord:
    """A cached payload with its production timestamp and hash."""

    key: str
    payload: Any
    produced_at: float  # clock() value when stored
    ttl_seconds: int
    content_hash: str

    def age(self, now: float) -> float:
        """Seconds since this record was produced."""
        return now - self.produced_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds


class CacheEventKind(str, Enum):
    set = "set"
    invalidate = "invalidate"
    evict = "evict"


@dataclass(frozen=True)
class CacheEvent:
    kind: CacheEventKind
    key: str
    at: float
    record: Optional[CacheRecord] = None


CacheListener = Callable[[CacheEvent], None]


def log_cache_event(event: CacheEvent) -> None:
    """Observer that writes cache events to the log."""
    if event.kind is CacheEventKind.set and event.record is not None:
        logger.info(
            "Cache SET: %s (ttl=%ds, hash=%s)",
            event.key,
            event.record.ttl_seconds,
            event.record.content_hash,
        )
    elif event.kind is CacheEventKind.invalidate:
        logger.info("Cache DEL: %s", event.key)
    else:
        logger.info("Cache EVICT: %s", event.key)


class CacheStore:
    """
    Key -> CacheRecord store with a bounded key count.

    - get(): returns the record, expired or not (None if absent).
    - set(): replaces the record, recomputing hash and timestamp.
    - invalidate(): removes a record (explicit force refresh only).
    """

    def __init__(
        self,
        max_keys: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self._max_keys = max_keys
        self._clock = clock
        self._store: dict[str, CacheRecord] = {}
        self._listeners: list[CacheListener] = []

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register an observer. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[CacheRecord]:
        """Return the record for key, including expired ones."""
        return self._store.get(key)

    def has(self, key: str) -> bool:
        return key in self._store

    def set(self, key: str, payload: Any, ttl_seconds: int) -> CacheRecord:
        """Store payload under key with the current timestamp."""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        record = CacheRecord(
            key=key,
            payload=payload,
            produced_at=self._clock(),
            ttl_seconds=ttl_seconds,
            content_hash=content_hash(payload),
        )
        self._store[key] = record
        self._notify(CacheEventKind.set, key, record)
        self._evict_overflow()
        return record

    def invalidate(self, key: str) -> bool:
        """Remove the record for key. Returns True if one existed."""
        record = self._store.pop(key, None)
        if record is None:
            return False
        self._notify(CacheEventKind.invalidate, key, record)
        return True

    def clear(self) -> int:
        """Remove all records. Returns how many were removed."""
        keys = list(self._store)
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "count": len(self._store),
            "keys": sorted(self._store),
            "max_keys": self._max_keys,
            "records": {
                key: {
                    "age_seconds": round(record.age(now), 1),
                    "ttl_seconds": record.ttl_seconds,
                    "expired": record.is_expired(now),
                    "content_hash": record.content_hash,
                }
                for key, record in sorted(self._store.items())
            },
        }

    def _evict_overflow(self) -> None:
        while len(self._store) > self._max_keys:
            oldest = min(self._store.values(), key=lambda r: r.produced_at)
            del self._store[oldest.key]
            self._notify(CacheEventKind.evict, oldest.key, oldest)

    def _notify(
        self, kind: CacheEventKind, key: str, record: Optional[CacheRecord]
    ) -> None:
        event = CacheEvent(kind=kind, key=key, at=self._clock(), record=record)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Cache listener failed for %s %s", kind.value, key)
