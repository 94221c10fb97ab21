"""
Failed deletion ledger.

Cleanup jobs keep the URLs they could not delete here, keyed
by media id, for a later retry sweep. Records expire after a week.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

import redis
from redis.exceptions import RedisError

from eventmedia.core.config import get_settings
from eventmedia.core.redis_client import get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "failed_deletions:"


def ledger_key(media_id: str) -> str:
    return f"{KEY_PREFIX}{media_id}"


class FailedDeletionLedger:
    """Redis-backed store of URLs whose deletion did not succeed."""

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self._client = client
        self.ttl_seconds = ttl_seconds or get_settings().FAILED_DELETION_TTL_SECONDS

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def get(self, media_id: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(ledger_key(media_id))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Unreadable failed-deletion record for %s", media_id)
            return None

    def record(self, media_id: str, failed_urls: List[str]) -> Dict[str, Any]:
        """
        Store (or extend) the record for a media item.

        An existing record keeps its URLs; the new ones are appended and
        retry_count goes up by one.
        """
        existing = None
        try:
            existing = self.get(media_id)
        except RedisError as e:
            logger.warning("Could not read existing failed-deletion record for %s: %s", media_id, e)

        urls = list(dict.fromkeys([*(existing or {}).get("failedUrls", []), *failed_urls]))
        record = {
            "mediaId": media_id,
            "failedUrls": urls,
            "timestamp": int(time.time() * 1000),
            "retryCount": int((existing or {}).get("retryCount", -1)) + 1,
        }
        self.client.setex(ledger_key(media_id), self.ttl_seconds, json.dumps(record))

        logger.info(
            "Stored %d failed deletions for retry (media %s, sample %s)",
            len(urls),
            media_id,
            urls[:3],
        )
        return record

    def reconcile(
        self, media_id: str, failed_urls: List[str], resolved_urls: List[str]
    ) -> Optional[Dict[str, Any]]:
        """
        Bring the record in line with one cleanup run.

        Resolved URLs leave the record, newly failed ones join it. retryCount
        is left alone: it counts sweep retries, not job attempts. The key is
        removed once nothing is outstanding.
        """
        existing = self.get(media_id) or {}
        resolved = set(resolved_urls)
        merged = dict.fromkeys([*existing.get("failedUrls", []), *failed_urls])
        urls = [u for u in merged if u not in resolved]
        if not urls:
            if existing:
                self.clear(media_id)
            return None

        record = {
            "mediaId": media_id,
            "failedUrls": urls,
            "timestamp": int(time.time() * 1000),
            "retryCount": int(existing.get("retryCount", 0)),
        }
        self.client.setex(ledger_key(media_id), self.ttl_seconds, json.dumps(record))
        logger.info("Tracking %d failed deletions for media %s", len(urls), media_id)
        return record

    def clear(self, media_id: str) -> None:
        self.client.delete(ledger_key(media_id))
        logger.info("Cleared failed-deletion record for media %s", media_id)
