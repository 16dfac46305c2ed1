"""
Dataset keys and the registry that binds them to the origin service.

A dataset key is a base name plus optional filters, e.g. "schedule",
"points-table" or "matches:status=live". Filters are sorted so equal
filters always produce the same key.

Only bare names of upstream datasets are cached. A filtered key, or any
key of a derived dataset (one with a `source`), is a view: the source
record is resolved through the origin like any other request, so it
shares its cache entry, coalescing and stale/fallback handling, and the
view's selection runs over the payload on every request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from scorefeed.coordinator import FetchFn
from scorefeed.conditional import ConditionalResponder, content_hash
from scorefeed.errors import InvalidFilter
from scorefeed.freshness import DataCategory
from scorefeed.origin import FallbackFn, OriginService, ResolveResult
from scorefeed import selection


def dataset_key(name: str, **filters: Any) -> str:
    """Build a canonical key. Empty/None filter values are dropped."""
    if ":" in name:
        raise ValueError(f"Dataset name must not contain ':': {name!r}")
    parts = [
        f"{field}={value}"
        for field, value in sorted(filters.items())
        if value is not None and value != ""
    ]
    if not parts:
        return name
    return f"{name}:{','.join(parts)}"


def parse_key(key: str) -> tuple[str, dict[str, str]]:
    """Split a dataset key into (name, filters)."""
    name, _, rest = key.partition(":")
    filters: dict[str, str] = {}
    if rest:
        for part in rest.split(","):
            field, sep, value = part.partition("=")
            if not sep or not field:
                raise ValueError(f"Malformed dataset key: {key!r}")
            filters[field] = value
    return name, filters


def canonicalize_key(key: str) -> str:
    name, filters = parse_key(key)
    return dataset_key(name, **filters)


@dataclass(frozen=True)
class View:
    """
    Filtered projection of a raw dataset payload.

    parse() validates the key's filters and turns them into options for
    select(); it raises ValueError on a bad filter name or value.
    """

    name: str
    parse: Callable[[dict[str, str]], dict[str, Any]]
    select: Callable[[Any, dict[str, Any]], Any]


def _select_schedule(schedule: Any, options: dict[str, Any]) -> Any:
    return selection.select_schedule(schedule, **options)


def _select_points(table: Any, options: dict[str, Any]) -> Any:
    return selection.select_points_table(table, **options)


def _select_matches(schedule: Any, options: dict[str, Any]) -> Any:
    return selection.select_matches(schedule, datetime.now(timezone.utc), **options)


VIEWS = {
    "schedule": View("schedule", selection.parse_schedule_filters, _select_schedule),
    "points": View("points", selection.parse_points_filters, _select_points),
    "matches": View("matches", selection.parse_match_filters, _select_matches),
}


@dataclass(frozen=True)
class Dataset:
    """One logical dataset served by the origin."""

    name: str
    ttl_seconds: int
    category: DataCategory
    fetch: FetchFn
    fallback: FallbackFn
    hot: bool = False
    source: Optional[str] = None
    view: Optional[View] = None


class DatasetRegistry:
    """Looks up the dataset definition for any key."""

    def __init__(self, datasets: list[Dataset]) -> None:
        self._datasets = {d.name: d for d in datasets}

    def get(self, key: str) -> Optional[Dataset]:
        name, _ = parse_key(key)
        return self._datasets.get(name)

    def require(self, key: str) -> Dataset:
        dataset = self.get(key)
        if dataset is None:
            raise KeyError(f"Unknown dataset: {key}")
        return dataset

    def hot_keys(self) -> list[str]:
        return [d.name for d in self._datasets.values() if d.hot and d.source is None]

    def __iter__(self):
        return iter(self._datasets.values())

    def __contains__(self, key: str) -> bool:
        try:
            return self.get(key) is not None
        except ValueError:
            return False


async def resolve_dataset(
    origin: OriginService,
    registry: DatasetRegistry,
    key: str,
    force_refresh: bool = False,
) -> ResolveResult:
    """
    Resolve a key through the origin using its registered dataset.

    Filters are validated before anything is fetched.

    Raises:
        KeyError: unknown dataset.
        InvalidFilter: the dataset does not accept the key's filters.
        NoDataAvailable: nothing to serve for the underlying record.
    """
    key = canonicalize_key(key)
    dataset = registry.require(key)
    _, filters = parse_key(key)

    if dataset.source is None and not filters:
        return await origin.resolve(
            key,
            dataset.ttl_seconds,
            dataset.fetch,
            dataset.fallback,
            force_refresh=force_refresh,
        )

    if dataset.view is None:
        raise InvalidFilter(key, f"dataset '{dataset.name}' takes no filters")
    try:
        options = dataset.view.parse(filters)
    except ValueError as exc:
        raise InvalidFilter(key, str(exc)) from exc

    base = registry.require(dataset.source) if dataset.source else dataset
    result = await origin.resolve(
        base.name,
        base.ttl_seconds,
        base.fetch,
        base.fallback,
        force_refresh=force_refresh,
    )
    payload = dataset.view.select(result.payload, options)
    warning = result.warning
    if warning is not None:
        warning = warning.model_copy(update={"key": key})
    return ResolveResult(
        key=key,
        payload=payload,
        source=result.source,
        produced_at=result.produced_at,
        etag=content_hash(payload),
        warning=warning,
    )


Loader = Callable[[str, Optional[str]], Awaitable[Optional[ResolveResult]]]
Refresher = Callable[[str], Awaitable[ResolveResult]]


def origin_loader(origin: OriginService, registry: DatasetRegistry) -> Loader:
    """Consumer loader backed by an in-process origin (never forced)."""
    responder = ConditionalResponder()

    async def load(key: str, etag: Optional[str]) -> Optional[ResolveResult]:
        result = await resolve_dataset(origin, registry, key)
        if responder.is_unchanged(result.etag, etag):
            return None
        return result

    return load


def origin_refresher(origin: OriginService, registry: DatasetRegistry) -> Refresher:
    """Force-refresh binding for the orchestrator, in-process."""

    async def refresh(key: str) -> ResolveResult:
        return await resolve_dataset(origin, registry, key, force_refresh=True)

    return refresh


def refresh_hot_datasets(origin: OriginService, registry: DatasetRegistry):
    """Build the scheduler job that refreshes every hot dataset."""

    async def job() -> None:
        for dataset in registry:
            if dataset.hot and dataset.source is None:
                await origin.refresh(dataset.name, dataset.ttl_seconds, dataset.fetch)

    return job
