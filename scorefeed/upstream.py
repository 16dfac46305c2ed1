"""
Async client for the upstream scraping service.

Thin wrapper around httpx. The scraping service answers
GET /api/schedule and GET /api/points-table with
{"success": bool, "data": ..., "error": str?, "timestamp": str}.
Raises UpstreamError on failures; retries and timeouts across attempts are
the fetch coordinator's job.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from scorefeed.config import DatasetConfig
from scorefeed.datasets import parse_key
from scorefeed.errors import UpstreamError

logger = logging.getLogger(__name__)


class UpstreamClient:
    """Async client for the scraping service."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        datasets: list[DatasetConfig],
        base_url: str = "http://localhost:3001",
        api_key: Optional[str] = None,
        request_timeout: float = 30.0,
    ) -> None:
        self._http = http_client
        self._datasets = {d.name: d for d in datasets}
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._request_timeout = request_timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def fetch_fresh_data(self, key: str) -> Any:
        """
        Fetch the raw payload for a dataset.

        Only bare names of datasets with an upstream path are fetched.
        Filtered and derived keys are views computed over the raw record
        by the dataset registry, so asking for one here is a caller bug
        that retrying cannot fix.
        """
        name, filters = parse_key(key)
        dataset = self._datasets.get(name)
        if dataset is None:
            raise UpstreamError(f"Unknown dataset: {name}", retryable=False)
        if filters or dataset.source is not None:
            raise UpstreamError(
                f"'{key}' is a view over '{dataset.source or name}', not an upstream dataset",
                retryable=False,
            )
        return await self._fetch(dataset.path)

    async def _fetch(self, path: str) -> Any:
        """GET a scraping-service endpoint and return its data field."""
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.get(
                url,
                headers=self._headers(),
                timeout=self._request_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Upstream request failed: %s %s -> %s", "GET", url, exc)
            raise UpstreamError(f"Connection error: {exc}") from exc

        if response.status_code == 429:
            raise UpstreamError("Rate limited by upstream", status_code=429)

        if response.status_code != 200:
            raise UpstreamError(
                f"Upstream returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(f"Invalid JSON from upstream: {exc}") from exc

        if not body.get("success", False):
            raise UpstreamError(f"Upstream error: {body.get('error', 'unknown error')}")
        return body.get("data")
