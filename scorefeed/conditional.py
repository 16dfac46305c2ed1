"""
Conditional responses: content hashing and ETag comparison.

The ETag is a pure function of the payload's canonical JSON form, so two
structurally equal payloads always carry the same tag regardless of dict
insertion order.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Optional


def canonical_json(payload: Any) -> str:
    """Serialize with sorted keys and compact separators."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def content_hash(payload: Any) -> str:
    """Quoted MD5 hex digest of the canonical serialization."""
    digest = hashlib.md5(canonical_json(payload).encode("utf-8")).hexdigest()
    return f'"{digest}"'


def _normalize_tag(tag: str) -> str:
    tag = tag.strip()
    if tag.startswith("W/"):
        tag = tag[2:]
    return tag


@dataclass(frozen=True)
class Wrapped:
    """A payload together with its ETag."""

    payload: Any
    etag: str


class ConditionalResponder:
    """Computes ETags and answers If-None-Match checks."""

    def wrap(self, payload: Any) -> Wrapped:
        return Wrapped(payload=payload, etag=content_hash(payload))

    def is_unchanged(self, etag: str, client_token: Optional[str]) -> bool:
        """
        True if the client's token matches the current ETag.

        Accepts a raw If-None-Match header value: "*", a comma-separated
        list of tags, and weak (W/) tags compared by their opaque part.
        """
        if not client_token:
            return False
        if client_token.strip() == "*":
            return True
        current = _normalize_tag(etag)
        return any(
            _normalize_tag(candidate) == current
            for candidate in client_token.split(",")
            if candidate.strip()
        )
