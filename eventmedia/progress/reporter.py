"""Per-job progress tracking: persisted to the media record and broadcast to admins."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from eventmedia.core.logging import short_id

logger = logging.getLogger(__name__)

# Stage anchors; variant generation fills the range between them.
UPLOADING_START = 5
UPLOADING_DONE = 10
PREVIEW_START = 30
VARIANTS_START = 30
VARIANTS_END = 80
FINALIZING = 85
COMPLETED = 100


class ProgressReporter:
    """
    Publishes progress for one media item.

    Percentages never go down: a report below the highest value seen so far
    (including what a previous attempt already stored) is raised to it.
    """

    def __init__(
        self,
        media_id: str,
        event_id: str,
        repository,
        broadcaster,
        floor: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.media_id = media_id
        self.event_id = event_id
        self.repository = repository
        self.broadcaster = broadcaster
        self.context = context or {}
        self._last = max(0, min(100, int(floor)))
        self._stage: Optional[str] = None

    async def report(self, stage: str, percentage: int) -> int:
        value = max(self._last, min(100, int(percentage)))
        if value == self._last and stage == self._stage:
            return value
        self._last = value
        self._stage = stage

        # Publish before the await so concurrent reports go out in order.
        self.broadcaster.publish_progress(self.media_id, self.event_id, stage, value, self.context)

        try:
            await self.repository.update_progress(self.media_id, stage, value)
        except PyMongoError as e:
            logger.warning("Could not persist progress for %s: %s", short_id(self.media_id), e)
        return value

    async def variants_progress(self, done: int, total: int) -> int:
        span = VARIANTS_END - VARIANTS_START
        value = VARIANTS_START + (span * done // total if total else span)
        return await self.report("processing", value)
