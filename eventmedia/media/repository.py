"""Media record persistence (Motor)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId

from eventmedia.core.config import get_settings
from eventmedia.core.database import Database
from eventmedia.media.models import MediaProcessingState, ProcessedMedia

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def media_filter(media_id: str) -> Dict[str, Union[ObjectId, str]]:
    if ObjectId.is_valid(media_id):
        return {"_id": ObjectId(media_id)}
    return {"_id": media_id}


class MediaRepository:
    """Reads and writes the `processing` sub-document and the variant slots."""

    def __init__(self, collection=None):
        self._collection_override = collection

    def _collection(self):
        if self._collection_override is not None:
            return self._collection_override
        return Database.get_collection(get_settings().MEDIA_COLLECTION)

    async def get(self, media_id: str) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one(media_filter(media_id))

    async def get_progress(self, media_id: str) -> int:
        doc = await self._collection().find_one(
            media_filter(media_id), {"processing.progress_percentage": 1}
        )
        if not doc:
            return 0
        return int((doc.get("processing") or {}).get("progress_percentage") or 0)

    async def mark_processing(self, media_id: str, job_id: str, started_at: datetime) -> None:
        await self._collection().update_one(
            media_filter(media_id),
            {
                "$set": {
                    "processing.status": "processing",
                    "processing.current_stage": "uploading",
                    "processing.started_at": started_at,
                    "processing.job_id": job_id,
                    "processing.error_message": None,
                    "updated_at": _now(),
                },
                "$max": {"processing.progress_percentage": 0},
            },
        )

    async def update_progress(self, media_id: str, stage: str, percentage: int) -> None:
        # $max keeps the stored value non-decreasing even across retries.
        await self._collection().update_one(
            media_filter(media_id),
            {
                "$set": {"processing.current_stage": stage, "updated_at": _now()},
                "$max": {"processing.progress_percentage": int(percentage)},
            },
        )

    async def save_completed(self, processed: ProcessedMedia, state: MediaProcessingState) -> None:
        """Write the full final state in one update."""
        variants = processed.variants
        res = await self._collection().update_one(
            media_filter(processed.media_id),
            {
                "$set": {
                    "url": processed.final_url,
                    "preview_url": processed.preview_url,
                    "image_variants": variants.model_dump(),
                    "metadata.width": processed.width,
                    "metadata.height": processed.height,
                    "metadata.aspect_ratio": round(processed.width / processed.height, 4),
                    "processing": state.model_dump(),
                    "updated_at": _now(),
                }
            },
        )
        if res.matched_count == 0:
            logger.warning("Media %s disappeared before its variants were saved", processed.media_id)

    async def mark_failed(
        self,
        media_id: str,
        error_message: str,
        retry_count: int,
        processing_time_ms: Optional[int] = None,
    ) -> None:
        await self._collection().update_one(
            media_filter(media_id),
            {
                "$set": {
                    "processing.status": "failed",
                    "processing.current_stage": "failed",
                    "processing.error_message": error_message,
                    "processing.retry_count": retry_count,
                    "processing.processing_time_ms": processing_time_ms,
                    "processing.completed_at": _now(),
                    "updated_at": _now(),
                }
            },
        )

    async def mark_retrying(self, media_id: str, error_message: str, retry_count: int) -> None:
        await self._collection().update_one(
            media_filter(media_id),
            {
                "$set": {
                    "processing.status": "pending",
                    "processing.error_message": error_message,
                    "processing.retry_count": retry_count,
                    "updated_at": _now(),
                }
            },
        )
