"""Tests for dataset keys, the registry, dataset views and static fallback data."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import FakeClock, POINTS_DATA, SCHEDULE_DATA
from scorefeed.cache import CacheStore
from scorefeed.coordinator import FetchCoordinator
from scorefeed.datasets import (
    VIEWS,
    Dataset,
    DatasetRegistry,
    canonicalize_key,
    dataset_key,
    origin_loader,
    origin_refresher,
    parse_key,
    refresh_hot_datasets,
    resolve_dataset,
)
from scorefeed.errors import InvalidFilter, NoDataAvailable, UpstreamError
from scorefeed.fallback import StaticFallback
from scorefeed.freshness import DataCategory
from scorefeed.models import DataSource, WarningKind
from scorefeed.origin import OriginService


class TestKeys:
    def test_plain_name(self):
        assert dataset_key("schedule") == "schedule"

    def test_filters_sorted(self):
        assert dataset_key("matches", team="RCB", status="live") == "matches:status=live,team=RCB"

    def test_empty_filters_dropped(self):
        assert dataset_key("matches", status="live", team=None, venue="") == "matches:status=live"

    def test_name_with_separator_rejected(self):
        with pytest.raises(ValueError):
            dataset_key("matches:live")

    def test_parse(self):
        assert parse_key("schedule") == ("schedule", {})
        assert parse_key("matches:status=live,limit=5") == (
            "matches",
            {"status": "live", "limit": "5"},
        )

    def test_parse_malformed(self):
        with pytest.raises(ValueError):
            parse_key("matches:status")

    def test_canonicalize(self):
        assert canonicalize_key("matches:team=RCB,status=live") == "matches:status=live,team=RCB"


PAYLOADS = {"schedule": SCHEDULE_DATA, "points-table": POINTS_DATA}


def _upstream(delay=0.0):
    """Mocked upstream fetch serving the raw payload of each dataset."""

    async def fetch(key):
        if delay:
            await asyncio.sleep(delay)
        return PAYLOADS[key]

    return AsyncMock(side_effect=fetch)


def _registry(fetch=None, hot=("schedule",), fallback=None):
    fetch = fetch or _upstream()
    fallback = fallback if fallback is not None else StaticFallback({})
    return DatasetRegistry([
        Dataset("schedule", 60, DataCategory.schedule, fetch, fallback.fallback_for,
                hot="schedule" in hot, view=VIEWS["schedule"]),
        Dataset("points-table", 60, DataCategory.standings, fetch, fallback.fallback_for,
                hot="points-table" in hot, view=VIEWS["points"]),
        Dataset("matches", 60, DataCategory.live, fetch, fallback.fallback_for,
                hot="matches" in hot, source="schedule", view=VIEWS["matches"]),
        Dataset("venues", 60, DataCategory.schedule, fetch, fallback.fallback_for),
    ])


class TestRegistry:
    def test_lookup_by_name_and_filtered_key(self):
        registry = _registry()
        assert registry.get("schedule").name == "schedule"
        assert registry.get("matches:status=live").name == "matches"
        assert registry.get("weather") is None

    def test_require_unknown_raises(self):
        with pytest.raises(KeyError):
            _registry().require("weather")

    def test_contains(self):
        registry = _registry()
        assert "points-table" in registry
        assert "weather" not in registry
        assert "matches:broken" not in registry

    def test_hot_keys(self):
        assert _registry(hot=("schedule", "points-table")).hot_keys() == ["schedule", "points-table"]

    def test_derived_dataset_is_never_hot(self):
        assert _registry(hot=("schedule", "matches")).hot_keys() == ["schedule"]


def _origin(clock=None):
    cache = CacheStore(clock=clock or FakeClock())
    return OriginService(cache, FetchCoordinator(timeout=1.0, max_retries=0, retry_delay=0))


class TestBindings:
    @pytest.mark.asyncio
    async def test_loader_returns_none_when_unchanged(self):
        origin = _origin()
        load = origin_loader(origin, _registry())

        first = await load("schedule", None)
        assert first.payload == SCHEDULE_DATA
        assert await load("schedule", first.etag) is None

    @pytest.mark.asyncio
    async def test_loader_canonicalizes_keys(self):
        fetch = _upstream()
        origin = _origin()
        load = origin_loader(origin, _registry(fetch))

        first = await load("matches:team=RCB,status=completed", None)
        second = await load("matches:status=completed,team=RCB", None)

        assert first.key == second.key == "matches:status=completed,team=RCB"
        fetch.assert_awaited_once_with("schedule")

    @pytest.mark.asyncio
    async def test_refresher_forces_refetch(self):
        fetch = _upstream()
        origin = _origin()
        refresh = origin_refresher(origin, _registry(fetch))

        await refresh("schedule")
        result = await refresh("schedule")

        assert result.source == DataSource.fresh
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_hot_job_refreshes_hot_datasets_only(self):
        fetch = _upstream()
        origin = _origin()
        job = refresh_hot_datasets(
            origin, _registry(fetch, hot=("schedule", "points-table", "matches"))
        )

        await job()

        assert sorted(call.args[0] for call in fetch.await_args_list) == ["points-table", "schedule"]
        assert origin.cache.has("schedule")
        assert not origin.cache.has("matches")

    @pytest.mark.asyncio
    async def test_hot_job_survives_upstream_failure(self):
        fetch = AsyncMock(side_effect=UpstreamError("down"))
        origin = _origin()
        job = refresh_hot_datasets(origin, _registry(fetch))

        await job()

        assert not origin.cache.has("schedule")


class TestViews:
    @pytest.mark.asyncio
    async def test_bare_name_serves_raw_payload(self):
        result = await resolve_dataset(_origin(), _registry(), "points-table")
        assert result.payload == POINTS_DATA

    @pytest.mark.asyncio
    async def test_derived_view_reads_cached_source_record(self):
        fetch = _upstream()
        origin = _origin()
        registry = _registry(fetch)

        await resolve_dataset(origin, registry, "schedule")
        result = await resolve_dataset(origin, registry, "matches:status=completed")

        assert [m["id"] for m in result.payload["matches"]] == ["m1"]
        assert result.key == "matches:status=completed"
        assert result.source == DataSource.cache
        fetch.assert_awaited_once_with("schedule")
        assert origin.cache.stats()["keys"] == ["schedule"]

    @pytest.mark.asyncio
    async def test_concurrent_views_share_one_source_fetch(self):
        fetch = _upstream(delay=0.05)
        origin = _origin()
        registry = _registry(fetch)

        results = await asyncio.gather(
            resolve_dataset(origin, registry, "schedule"),
            resolve_dataset(origin, registry, "matches:status=live"),
            resolve_dataset(origin, registry, "matches:status=upcoming"),
            resolve_dataset(origin, registry, "schedule:team=Mumbai"),
        )

        fetch.assert_awaited_once_with("schedule")
        assert [m["id"] for m in results[2].payload["matches"]] == ["m2"]
        assert results[3].payload["summary"]["totalMatches"] == 1

    @pytest.mark.asyncio
    async def test_view_etag_differs_from_source(self):
        origin = _origin()
        registry = _registry()
        raw = await resolve_dataset(origin, registry, "schedule")
        view = await resolve_dataset(origin, registry, "matches")
        assert view.etag != raw.etag

    @pytest.mark.parametrize("key", [
        "matches:status=postponed",
        "matches:limit=ten",
        "matches:limit=0",
        "matches:fromDate=yesterday",
        "matches:colour=blue",
        "points-table:sort=runs",
        "points-table:order=sideways",
        "schedule:status=live",
        "venues:city=Mumbai",
    ])
    @pytest.mark.asyncio
    async def test_bad_filters_rejected_before_fetch(self, key):
        fetch = _upstream()
        origin = _origin()

        with pytest.raises(InvalidFilter) as exc_info:
            await resolve_dataset(origin, _registry(fetch), key)

        assert exc_info.value.key == key
        fetch.assert_not_awaited()
        assert origin.coordinator.stats()["upstream_calls"] == 0

    @pytest.mark.asyncio
    async def test_filtered_schedule_keeps_grouping(self):
        result = await resolve_dataset(_origin(), _registry(), "schedule:venue=eden")

        assert list(result.payload["schedule"]) == ["League"]
        assert [m["id"] for m in result.payload["schedule"]["League"]] == ["m1"]
        assert result.payload["filters"]["venue"] == "eden"

    @pytest.mark.asyncio
    async def test_sorted_points_table(self):
        result = await resolve_dataset(_origin(), _registry(), "points-table:sort=points,order=asc")

        assert [row["team"] for row in result.payload["pointsTable"]] == ["KKR", "RCB"]
        assert result.payload["statistics"]["topTeam"]["team"] == "RCB"
        assert result.payload["order"] == "asc"

    @pytest.mark.asyncio
    async def test_stale_source_warning_names_the_view(self):
        clock = FakeClock()
        fetch = _upstream()
        origin = _origin(clock)
        registry = _registry(fetch)
        await resolve_dataset(origin, registry, "schedule")
        clock.advance(61)
        fetch.side_effect = UpstreamError("scraper down")

        result = await resolve_dataset(origin, registry, "matches:status=completed")

        assert result.source == DataSource.stale_cache
        assert result.warning.kind == WarningKind.upstream_unavailable
        assert result.warning.key == "matches:status=completed"
        assert [m["id"] for m in result.payload["matches"]] == ["m1"]

    @pytest.mark.asyncio
    async def test_view_over_source_fallback(self):
        fetch = AsyncMock(side_effect=UpstreamError("scraper down"))
        fallback = StaticFallback({"schedule": SCHEDULE_DATA})

        result = await resolve_dataset(
            _origin(), _registry(fetch, fallback=fallback), "matches:status=upcoming"
        )

        assert result.source == DataSource.fallback
        assert result.warning.kind == WarningKind.fallback_data
        assert [m["id"] for m in result.payload["matches"]] == ["m2"]

    @pytest.mark.asyncio
    async def test_view_without_any_source_data(self):
        fetch = AsyncMock(side_effect=UpstreamError("scraper down"))
        with pytest.raises(NoDataAvailable):
            await resolve_dataset(_origin(), _registry(fetch), "matches")

    @pytest.mark.asyncio
    async def test_force_refresh_of_view_refetches_source(self):
        fetch = _upstream()
        origin = _origin()
        registry = _registry(fetch)

        await resolve_dataset(origin, registry, "matches")
        result = await resolve_dataset(origin, registry, "matches", force_refresh=True)

        assert result.source == DataSource.fresh
        assert fetch.await_count == 2


class TestStaticFallback:
    def test_exact_key_then_name(self):
        fallback = StaticFallback({
            "matches": {"all": True},
            "matches:status=live": {"live": True},
        })
        assert fallback.fallback_for("matches:status=live") == {"live": True}
        assert fallback.fallback_for("matches:team=RCB") == {"all": True}
        assert fallback.fallback_for("schedule") is None

    def test_keys_are_canonicalized(self):
        fallback = StaticFallback({"matches:team=RCB,status=live": []})
        assert fallback.keys() == ["matches:status=live,team=RCB"]
        assert fallback.fallback_for("matches:status=live,team=RCB") == []

    def test_from_file(self, tmp_path):
        p = tmp_path / "fallback.yaml"
        p.write_text("schedule:\n  League: []\npoints-table: []\n")
        fallback = StaticFallback.from_file(str(p))
        assert fallback.fallback_for("schedule") == {"League": []}
        assert fallback.fallback_for("points-table") == []

    def test_missing_file_means_no_fallback(self, tmp_path):
        fallback = StaticFallback.from_file(str(tmp_path / "nope.yaml"))
        assert fallback.keys() == []
        assert StaticFallback.from_file(None).keys() == []

    def test_non_mapping_file_raises(self, tmp_path):
        p = tmp_path / "fallback.yaml"
        p.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            StaticFallback.from_file(str(p))
