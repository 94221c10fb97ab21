"""
Object URL normalization.

The object store hands back URLs with cache-busting query parameters
(`?v=<etag>`, `?updatedAt=...`). URLs recorded at different times for the same
object therefore differ only in their query string; normalizing drops it so
they compare equal.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit, urlunsplit


def normalize_url(value: Optional[str]) -> str:
    """
    Canonical form of an object URL: scheme, host and path, no query/fragment.

    Accepts:
    - Absolute URLs: `https://cdn.example.com/events/e1/originals/a.jpg?v=3`
    - Bare paths/keys: `events/e1/originals/a.jpg?v=3`

    normalize_url(normalize_url(u)) == normalize_url(u) for every input.
    """
    if not value:
        return ""

    raw = value.strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        # Malformed netloc (e.g. broken IPv6 literal); fall back to textual cut.
        return _strip_suffixes(raw)

    if not parts.scheme or not parts.netloc:
        return _strip_suffixes(raw)

    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _strip_suffixes(raw: str) -> str:
    return raw.split("#", 1)[0].split("?", 1)[0]
