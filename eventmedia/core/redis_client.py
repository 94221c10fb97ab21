"""Redis client shared by the progress broadcaster and the failure ledger."""

from __future__ import annotations

import functools

import redis

from eventmedia.core.config import get_settings


@functools.lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """Lazily created Redis client (decoded string responses)."""
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)
