"""
Pydantic models for the origin HTTP API.

Every dataset response carries the source tier it was served from and, when
the data is not fresh from upstream, a structured warning.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class DataSource(str, Enum):
    cache = "cache"
    fresh = "fresh"
    stale_cache = "stale-cache"
    fallback = "fallback"


class WarningKind(str, Enum):
    upstream_unavailable = "upstream_unavailable"
    fallback_data = "fallback_data"


class ErrorCode(str, Enum):
    no_data_available = "no_data_available"
    unknown_dataset = "unknown_dataset"
    invalid_filter = "invalid_filter"
    upstream_unavailable = "upstream_unavailable"
    unknown = "unknown"


class WarningDetail(BaseModel):
    """Why a response is not fresh data from upstream."""

    kind: WarningKind
    key: str
    timestamp: datetime
    message: str


class ErrorDetail(BaseModel):
    code: ErrorCode
    message: str


class DatasetResponse(BaseModel):
    """Response for GET /v1/datasets/{key}."""

    success: bool = True
    key: str
    data: Any = Field(description="Dataset payload as produced by the upstream")
    timestamp: datetime = Field(description="When the payload was produced (ISO 8601)")
    source: DataSource
    etag: str = Field(description="Content hash of the payload, usable as If-None-Match")
    warning: Optional[WarningDetail] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


class RefreshRequest(BaseModel):
    keys: list[str] = Field(min_length=1)


class BatchRefreshResponse(BaseModel):
    """Response for POST /v1/refresh."""

    success: bool
    results: dict[str, DatasetResponse] = Field(default_factory=dict)
    errors: dict[str, ErrorDetail] = Field(default_factory=dict)


class ClearCacheRequest(BaseModel):
    key: Optional[str] = None


class ClearCacheResponse(BaseModel):
    success: bool = True
    cleared: int
    message: str
