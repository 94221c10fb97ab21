"""
Real-time processing broadcasts.

Each event has two Redis pub/sub channels that the websocket gateway relays
to clients:

- `event:{event_id}:admin`  owners and moderators, every lifecycle detail
- `event:{event_id}:guest`  viewers, only appearance/removal and a generic
  failure signal

Publishing is fire-and-forget: errors are logged and never reach the job.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import redis
from redis.exceptions import RedisError

from eventmedia.core.logging import short_id
from eventmedia.core.redis_client import get_redis

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Processing failed"

STAGE_MESSAGES = {
    "uploading": "Uploading file...",
    "preview_creating": "Creating preview...",
    "processing": "Processing image...",
    "variants_creating": "Creating optimized versions...",
    "finalizing": "Finalizing...",
    "completed": "Complete!",
    "failed": "Processing failed",
}


def admin_channel(event_id: str) -> str:
    return f"event:{event_id}:admin"


def guest_channel(event_id: str) -> str:
    return f"event:{event_id}:guest"


class Broadcaster(Protocol):
    def publish_progress(
        self,
        media_id: str,
        event_id: str,
        stage: str,
        percentage: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    def publish_completed(
        self, media_id: str, event_id: str, final_url: str, variant_urls: Dict[str, str]
    ) -> None: ...

    def publish_failed(self, media_id: str, event_id: str, error_message: str) -> None: ...

    def publish_removed(self, media_id: str, event_id: str) -> None: ...


class RedisBroadcaster:
    """Broadcaster backed by Redis PUBLISH."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def _emit(self, channel: str, event_type: str, data: Dict[str, Any]) -> None:
        envelope = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            receivers = self.client.publish(channel, json.dumps(envelope, default=str))
        except (RedisError, TypeError, ValueError) as e:
            logger.warning("Broadcast %s on %s failed: %s", event_type, channel, e)
            return
        if not receivers:
            logger.debug("Broadcast %s on %s had no subscribers", event_type, channel)

    def publish_progress(
        self,
        media_id: str,
        event_id: str,
        stage: str,
        percentage: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        data = {
            "mediaId": media_id,
            "eventId": event_id,
            "stage": stage,
            "progressPercentage": int(percentage),
            "uploadedBy": context.get("uploaded_by"),
            "filename": context.get("filename"),
            "message": context.get("message") or STAGE_MESSAGES.get(stage, "Processing..."),
        }
        self._emit(admin_channel(event_id), "processing_progress", data)
        logger.debug("Progress broadcast: %s - %s (%s%%)", short_id(media_id), stage, percentage)

    def publish_completed(
        self, media_id: str, event_id: str, final_url: str, variant_urls: Dict[str, str]
    ) -> None:
        data = {
            "mediaId": media_id,
            "eventId": event_id,
            "finalUrl": final_url,
            "variants": dict(variant_urls),
        }
        self._emit(admin_channel(event_id), "processing_complete", data)
        # New photo becomes visible to viewers.
        self._emit(guest_channel(event_id), "processing_complete", data)

    def publish_failed(self, media_id: str, event_id: str, error_message: str) -> None:
        self._emit(
            admin_channel(event_id),
            "processing_failed",
            {"mediaId": media_id, "eventId": event_id, "error": error_message},
        )
        self._emit(
            guest_channel(event_id),
            "processing_failed",
            {"mediaId": media_id, "eventId": event_id, "error": GENERIC_FAILURE_MESSAGE},
        )

    def publish_removed(self, media_id: str, event_id: str) -> None:
        data = {"mediaId": media_id, "eventId": event_id}
        self._emit(admin_channel(event_id), "media_removed", data)
        self._emit(guest_channel(event_id), "media_removed", data)
