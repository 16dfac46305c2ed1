"""
Async client for the origin HTTP API, used by the consumer tier.

load() is a ConsumerCache loader: it sends the last ETag as If-None-Match
and returns None on 304. refresh() is a ForceRefreshOrchestrator refresher.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from scorefeed.errors import InvalidFilter, NoDataAvailable, OriginError
from scorefeed.models import DatasetResponse, ErrorCode, ErrorResponse
from scorefeed.origin import ResolveResult

logger = logging.getLogger(__name__)


class OriginClient:
    """Async client for the scorefeed origin API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _url(self, key: str, suffix: str = "") -> str:
        return f"{self._base_url}/v1/datasets/{quote(key, safe='')}{suffix}"

    async def load(self, key: str, etag: Optional[str] = None) -> Optional[ResolveResult]:
        """GET a dataset. Returns None when the origin answers 304."""
        headers = {"Accept": "application/json"}
        if etag:
            headers["If-None-Match"] = etag
        response = await self._request("GET", self._url(key), headers)
        if response.status_code == 304:
            logger.debug("Origin reports %s unchanged", key)
            return None
        return self._parse(key, response)

    async def refresh(self, key: str) -> ResolveResult:
        """Ask the origin to invalidate and refetch a dataset."""
        headers = {"Accept": "application/json", "Cache-Control": "no-cache"}
        response = await self._request("POST", self._url(key, "/refresh"), headers)
        return self._parse(key, response)

    async def _request(self, method: str, url: str, headers: dict[str, str]) -> httpx.Response:
        try:
            return await self._http.request(
                method, url, headers=headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            logger.error("Origin request failed: %s %s -> %s", method, url, exc)
            raise OriginError(f"Connection error: {exc}") from exc

    def _parse(self, key: str, response: httpx.Response) -> ResolveResult:
        if response.status_code != 200:
            self._raise_for_error(key, response)
        try:
            body = DatasetResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise OriginError(f"Invalid response from origin: {exc}") from exc
        return ResolveResult(
            key=body.key,
            payload=body.data,
            source=body.source,
            produced_at=body.timestamp.timestamp(),
            etag=body.etag,
            warning=body.warning,
        )

    def _raise_for_error(self, key: str, response: httpx.Response) -> None:
        try:
            error = ErrorResponse.model_validate(response.json()).error
        except (ValueError, ValidationError):
            raise OriginError(
                f"Origin returned {response.status_code}",
                status_code=response.status_code,
            )
        if error.code == ErrorCode.no_data_available:
            raise NoDataAvailable(key)
        if error.code == ErrorCode.invalid_filter:
            raise InvalidFilter(key, error.message)
        raise OriginError(error.message, status_code=response.status_code)
