"""
FastAPI application for the scorefeed origin tier.

Lifespan manages the httpx client, origin cache, fetch coordinator and the
background refresh scheduler.
Routes: /health, /v1/datasets/{key}, /v1/datasets/{key}/refresh,
/v1/refresh, /v1/cache/stats, /v1/cache/clear.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import Body, FastAPI, Header, Response
from fastapi.responses import JSONResponse

from scorefeed.cache import CacheStore, log_cache_event
from scorefeed.conditional import ConditionalResponder
from scorefeed.config import AppConfig, load_config
from scorefeed.coordinator import FetchCoordinator
from scorefeed.datasets import (
    VIEWS,
    Dataset,
    DatasetRegistry,
    canonicalize_key,
    refresh_hot_datasets,
    resolve_dataset,
)
from scorefeed.errors import InvalidFilter, NoDataAvailable
from scorefeed.fallback import StaticFallback
from scorefeed.models import (
    BatchRefreshResponse,
    ClearCacheRequest,
    ClearCacheResponse,
    DataSource,
    DatasetResponse,
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    RefreshRequest,
)
from scorefeed.origin import OriginService, ResolveResult
from scorefeed.scheduler import RefreshScheduler
from scorefeed.upstream import UpstreamClient

logger = logging.getLogger(__name__)

# Global references set during lifespan
_origin: Optional[OriginService] = None
_registry: Optional[DatasetRegistry] = None
_scheduler: Optional[RefreshScheduler] = None

_responder = ConditionalResponder()


def build_registry(
    config: AppConfig, upstream: UpstreamClient, fallback: StaticFallback
) -> DatasetRegistry:
    """One Dataset per configured dataset, all sharing the upstream client."""
    return DatasetRegistry(
        [
            Dataset(
                name=d.name,
                ttl_seconds=d.ttl_seconds,
                category=d.category,
                fetch=upstream.fetch_fresh_data,
                fallback=fallback.fallback_for,
                hot=d.hot,
                source=d.source,
                view=VIEWS[d.view] if d.view else None,
            )
            for d in config.datasets
        ]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, create HTTP client, origin service, scheduler."""
    global _origin, _registry, _scheduler

    # Configure logging
    log_level = os.environ.get("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    logger.info(
        "Loaded config: %d datasets, max_keys=%d, refresh_interval=%.0fs",
        len(config.datasets),
        config.max_keys,
        config.refresh_interval,
    )

    async with httpx.AsyncClient() as http_client:
        upstream = UpstreamClient(
            http_client=http_client,
            datasets=config.datasets,
            base_url=config.upstream_base_url,
            api_key=config.upstream_api_key,
            request_timeout=config.fetch_timeout,
        )
        cache = CacheStore(max_keys=config.max_keys)
        cache.subscribe(log_cache_event)
        coordinator = FetchCoordinator(
            timeout=config.fetch_timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )
        _origin = OriginService(cache=cache, coordinator=coordinator)
        _registry = build_registry(
            config, upstream, StaticFallback.from_file(config.fallback_path)
        )

        _scheduler = RefreshScheduler(name="hot-datasets")
        if config.refresh_interval > 0 and _registry.hot_keys():
            _scheduler.schedule(
                config.refresh_interval, refresh_hot_datasets(_origin, _registry)
            )
        logger.info("scorefeed origin ready")
        yield
        await _scheduler.stop()

    _origin = None
    _registry = None
    _scheduler = None


app = FastAPI(
    title="scorefeed",
    version="1.0.0",
    description="""
Origin cache in front of a slow, rate-limited sports data scraper.

## Features

- **Coalesced**: concurrent requests for one dataset share one upstream fetch
- **Resilient**: fresh -> stale cache -> fallback data, with structured warnings
- **Conditional**: every response carries an ETag; matching If-None-Match gets 304
- **Force refresh**: invalidate and refetch on demand
    """.strip(),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "datasets", "description": "Cached sports datasets"},
        {"name": "cache", "description": "Origin cache administration"},
        {"name": "health", "description": "Service health check"},
    ],
    docs_url="/docs",
    redoc_url="/redoc",
)


def _error(status_code: int, code: ErrorCode, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _not_ready() -> JSONResponse:
    return _error(503, ErrorCode.unknown, "Service not ready")


def _to_response(result: ResolveResult) -> DatasetResponse:
    return DatasetResponse(
        key=result.key,
        data=result.payload,
        timestamp=datetime.fromtimestamp(result.produced_at, tz=timezone.utc),
        source=result.source,
        etag=result.etag,
        warning=result.warning,
    )


def _cache_control(source: DataSource) -> str:
    if source == DataSource.fallback:
        return "public, max-age=300, s-maxage=600"
    return "public, max-age=60, s-maxage=120, stale-while-revalidate=600"


def _dataset_response(
    result: ResolveResult, if_none_match: Optional[str]
) -> Response:
    headers = {
        "ETag": result.etag,
        "Cache-Control": _cache_control(result.source),
        "X-Data-Source": result.source.value,
    }
    if _responder.is_unchanged(result.etag, if_none_match):
        return Response(status_code=304, headers=headers)
    body = _to_response(result)
    return JSONResponse(content=body.model_dump(mode="json"), headers=headers)


async def _resolve(key: str, force_refresh: bool) -> ResolveResult | JSONResponse:
    if _origin is None or _registry is None:
        return _not_ready()
    if key not in _registry:
        return _error(404, ErrorCode.unknown_dataset, f"Dataset '{key}' not found")
    try:
        return await resolve_dataset(_origin, _registry, key, force_refresh=force_refresh)
    except InvalidFilter as exc:
        return _error(400, ErrorCode.invalid_filter, exc.reason)
    except NoDataAvailable as exc:
        return _error(503, ErrorCode.no_data_available, str(exc))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    tags=["health"],
    summary="Health check",
    response_description="Service is healthy",
)
async def health():
    """Always returns HTTP 200 with a simple JSON response."""
    return {"status": "healthy"}


@app.get(
    "/v1/datasets/{key}",
    response_model=DatasetResponse,
    tags=["datasets"],
    summary="Get a dataset",
    responses={
        304: {"description": "Payload unchanged since the given ETag"},
        400: {"model": ErrorResponse, "description": "Invalid filter"},
        404: {"model": ErrorResponse, "description": "Unknown dataset"},
        503: {"model": ErrorResponse, "description": "No data available"},
    },
)
async def get_dataset(
    key: str,
    refresh: bool = False,
    if_none_match: Optional[str] = Header(default=None),
):
    """
    Return a dataset from the origin cache.

    Keys are a dataset name with optional filters, e.g. `schedule`,
    `points-table:sort=points` or `matches:status=live`. A bare name returns
    the raw upstream payload; filtered keys and `matches` return a view
    computed from it. Unknown filters or bad values get 400.
    `refresh=true` invalidates the cached record and refetches from upstream.

    The response reports which tier served it (`cache`, `fresh`,
    `stale-cache`, `fallback`) and carries a structured `warning` whenever
    the upstream fetch failed.
    """
    result = await _resolve(key, force_refresh=refresh)
    if isinstance(result, Response):
        return result
    return _dataset_response(result, if_none_match)


@app.post(
    "/v1/datasets/{key}/refresh",
    response_model=DatasetResponse,
    tags=["datasets"],
    summary="Force refresh a dataset",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid filter"},
        404: {"model": ErrorResponse, "description": "Unknown dataset"},
        503: {"model": ErrorResponse, "description": "No data available"},
    },
)
async def refresh_dataset(key: str):
    """Invalidate the cached record and refetch it from upstream."""
    result = await _resolve(key, force_refresh=True)
    if isinstance(result, Response):
        return result
    return _dataset_response(result, None)


@app.post(
    "/v1/refresh",
    response_model=BatchRefreshResponse,
    tags=["datasets"],
    summary="Force refresh several datasets",
)
async def refresh_datasets(request: RefreshRequest):
    """
    Force refresh every key in the request.

    `success` is true only if every key was refetched from upstream;
    keys that ended up on fallback data or failed outright are listed in
    `errors`.
    """
    if _origin is None or _registry is None:
        return _not_ready()

    response = BatchRefreshResponse(success=True)
    for key in dict.fromkeys(request.keys):
        if key not in _registry:
            response.errors[key] = ErrorDetail(
                code=ErrorCode.unknown_dataset, message=f"Dataset '{key}' not found"
            )
            continue
        try:
            result = await resolve_dataset(_origin, _registry, key, force_refresh=True)
        except InvalidFilter as exc:
            response.errors[key] = ErrorDetail(code=ErrorCode.invalid_filter, message=exc.reason)
            continue
        except NoDataAvailable as exc:
            response.errors[key] = ErrorDetail(
                code=ErrorCode.no_data_available, message=str(exc)
            )
            continue
        response.results[key] = _to_response(result)
        if result.source != DataSource.fresh:
            response.errors[key] = ErrorDetail(
                code=ErrorCode.upstream_unavailable,
                message=result.warning.message if result.warning else "refetch failed",
            )
    response.success = not response.errors
    return response


@app.get(
    "/v1/cache/stats",
    tags=["cache"],
    summary="Origin cache statistics",
)
async def cache_stats():
    """Cache contents, in-flight fetches, per-source counters and scheduler state."""
    if _origin is None:
        return _not_ready()
    stats = _origin.stats()
    stats["scheduler"] = _scheduler.stats() if _scheduler is not None else None
    return {"success": True, "stats": stats}


@app.post(
    "/v1/cache/clear",
    response_model=ClearCacheResponse,
    tags=["cache"],
    summary="Clear the origin cache",
)
async def clear_cache(request: Optional[ClearCacheRequest] = Body(default=None)):
    """Clear one key (`{"key": ...}`) or, with no key, the whole cache."""
    if _origin is None:
        return _not_ready()
    if request is not None and request.key:
        try:
            key = canonicalize_key(request.key)
        except ValueError:
            return _error(404, ErrorCode.unknown_dataset, f"Dataset '{request.key}' not found")
        cleared = 1 if _origin.cache.invalidate(key) else 0
        message = f"Cache key '{key}' {'cleared' if cleared else 'not found'}"
        return ClearCacheResponse(cleared=cleared, message=message)
    cleared = _origin.cache.clear()
    return ClearCacheResponse(cleared=cleared, message="All cache cleared")
