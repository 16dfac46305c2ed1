"""
Static fallback datasets.

Served only when an upstream fetch failed and nothing is cached for a key.
The YAML file maps dataset names to raw payloads:

    schedule: {...}
    points-table: [...]

Filtered and derived keys are views, so they are built from the fallback
of their source dataset. Lookup tries the exact key first, then the
dataset name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from scorefeed.datasets import canonicalize_key, parse_key

logger = logging.getLogger(__name__)


class StaticFallback:
    """Deterministic substitute payloads keyed by dataset key."""

    def __init__(self, payloads: Optional[dict[str, Any]] = None) -> None:
        self._payloads = {
            canonicalize_key(key): value for key, value in (payloads or {}).items()
        }

    @classmethod
    def from_file(cls, path: str | None) -> "StaticFallback":
        """Load payloads from YAML. A missing path means no fallback data."""
        if path is None:
            return cls()
        file_path = Path(path)
        if not file_path.exists():
            logger.warning("Fallback file not found: %s", path)
            return cls()
        with open(file_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Fallback file must contain a mapping: {path}")
        logger.info("Loaded fallback data for %d key(s) from %s", len(raw), path)
        return cls(raw)

    def fallback_for(self, key: str) -> Optional[Any]:
        key = canonicalize_key(key)
        if key in self._payloads:
            return self._payloads[key]
        name, _ = parse_key(key)
        return self._payloads.get(name)

    def keys(self) -> list[str]:
        return sorted(self._payloads)
