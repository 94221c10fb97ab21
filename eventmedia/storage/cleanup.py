"""
Cleanup worker handler.

Deletes the stored files of a removed media item. Stored URLs are matched
against a fresh listing of the event's folders (after normalization), so a
URL whose object is already gone is counted as done without touching the
store. Deletes run in small batches with a pause between them to stay
under the store's rate limits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from redis.exceptions import RedisError

from eventmedia.core.config import Settings, get_settings
from eventmedia.core.errors import StorageError, TransientError
from eventmedia.core.logging import short_id
from eventmedia.jobs.harness import JobContext, JobResult
from eventmedia.jobs.models import CleanupJobPayload
from eventmedia.storage.paths import event_prefixes
from eventmedia.storage.urls import normalize_url

logger = logging.getLogger(__name__)

DELETED = "deleted"
ALREADY_DELETED = "already_deleted"
FAILED = "failed"


@dataclass
class CleanupReport:
    media_id: str
    total: int = 0
    deleted: List[str] = field(default_factory=list)
    already_deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    batches: int = 0
    processing_time_ms: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 100.0
        return round((len(self.deleted) + len(self.already_deleted)) / self.total * 100, 1)

    def as_dict(self) -> Dict:
        data = asdict(self)
        data["success_rate"] = self.success_rate
        return data


class StorageCleaner:
    def __init__(
        self,
        store,
        ledger,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.ledger = ledger
        self.settings = settings or get_settings()
        self._sleep = sleep

    async def build_url_map(self, event_id: str) -> Dict[str, str]:
        """normalized URL -> object id for everything under the event's folders."""
        listings = await asyncio.gather(
            *(self.store.list_objects(prefix) for prefix in event_prefixes(event_id))
        )
        url_map: Dict[str, str] = {}
        for objects in listings:
            for obj in objects:
                url_map[normalize_url(obj.url)] = obj.object_id
        return url_map

    async def delete_object(self, object_id: str) -> Tuple[str, Optional[str]]:
        """Delete with linear-backoff retries. Returns (status, error)."""
        retries = self.settings.CLEANUP_DELETE_RETRIES
        delay_ms = self.settings.CLEANUP_RETRY_DELAY_MS
        attempt = 0
        while True:
            try:
                await self.store.delete(object_id)
                return DELETED, None
            except StorageError as e:
                if e.not_found:
                    return ALREADY_DELETED, None
                if not e.retryable or attempt >= retries:
                    return FAILED, str(e)
                attempt += 1
                logger.debug("Retrying delete of %s (%d/%d): %r", object_id, attempt, retries, e)
                await self._sleep(delay_ms * attempt / 1000.0)

    def batch_limits(self, is_bulk: bool = False) -> Tuple[int, int]:
        """(batch size, concurrent deletes per batch). Bulk removals use the larger pair."""
        s = self.settings
        if is_bulk:
            return max(1, s.CLEANUP_BULK_BATCH_SIZE), max(1, s.CLEANUP_BULK_MAX_CONCURRENT)
        return max(1, s.CLEANUP_BATCH_SIZE), max(1, s.CLEANUP_MAX_CONCURRENT)

    async def _delete_batch(
        self, batch: List[str], concurrency: int
    ) -> List[Tuple[str, Optional[str]]]:
        limiter = asyncio.Semaphore(concurrency)

        async def guarded(object_id: str):
            async with limiter:
                return await self.delete_object(object_id)

        results = await asyncio.gather(*(guarded(oid) for oid in batch), return_exceptions=True)
        outcomes = []
        for object_id, res in zip(batch, results):
            if isinstance(res, BaseException):
                logger.error("Unexpected error deleting %s: %r", object_id, res)
                outcomes.append((FAILED, str(res)))
            else:
                outcomes.append(res)
        return outcomes

    async def delete_urls(
        self, media_id: str, event_id: str, urls: List[str], is_bulk: bool = False
    ) -> CleanupReport:
        """Delete every URL, raising StorageError only if listing the folders fails."""
        started = time.monotonic()
        report = CleanupReport(media_id=media_id, total=len(urls))
        url_map = await self.build_url_map(event_id)

        # Several stored URLs (e.g. cache-busted variants) may point at one object.
        targets: Dict[str, List[str]] = {}
        for url in urls:
            object_id = url_map.get(normalize_url(url))
            if object_id is None:
                report.already_deleted.append(url)
            else:
                targets.setdefault(object_id, []).append(url)

        object_ids = list(targets)
        size, concurrency = self.batch_limits(is_bulk)
        for start in range(0, len(object_ids), size):
            if start:
                await self._sleep(self.settings.CLEANUP_BATCH_DELAY_MS / 1000.0)
            batch = object_ids[start:start + size]
            report.batches += 1
            for object_id, (status, error) in zip(batch, await self._delete_batch(batch, concurrency)):
                for url in targets[object_id]:
                    getattr(report, status).append(url)
                if error:
                    logger.warning("Failed to delete %s: %s", object_id, error)

        report.processing_time_ms = int((time.monotonic() - started) * 1000)
        return report

    def _sync_ledger(self, media_id: str, failed: List[str], resolved: List[str]) -> None:
        try:
            self.ledger.reconcile(media_id, failed, resolved)
        except RedisError as e:
            logger.error("Could not store failed deletions for %s: %s", short_id(media_id), e)

    async def process(self, payload: CleanupJobPayload, ctx: JobContext) -> JobResult:
        media_id = payload.media_id
        logger.info(
            "Cleaning up %d file(s) for media %s (attempt %d/%d)",
            len(payload.urls),
            short_id(media_id),
            ctx.attempt,
            ctx.max_attempts,
        )
        if not payload.urls:
            return JobResult.ok(CleanupReport(media_id=media_id).as_dict())

        try:
            report = await self.delete_urls(
                media_id, payload.event_id, payload.urls, is_bulk=payload.is_bulk
            )
        except StorageError as e:
            logger.error("Cleanup of %s aborted, could not list stored files: %r", short_id(media_id), e)
            self._sync_ledger(media_id, list(payload.urls), [])
            return JobResult.retryable(e)
        except Exception as e:
            logger.exception("Cleanup of %s aborted", short_id(media_id))
            self._sync_ledger(media_id, list(payload.urls), [])
            return JobResult.retryable(TransientError(f"Cleanup aborted: {e}"))

        self._sync_ledger(media_id, report.failed, report.deleted + report.already_deleted)

        logger.info(
            "Cleanup of %s done: %d deleted, %d already gone, %d failed in %d batch(es), %dms",
            short_id(media_id),
            len(report.deleted),
            len(report.already_deleted),
            len(report.failed),
            report.batches,
            report.processing_time_ms,
        )
        return JobResult.ok(report.as_dict())


    async def on_terminal_failure(
        self, payload: Mapping[str, Any], ctx: JobContext, error: str
    ) -> None:
        """The job failed without a run reaching the end: keep every URL for the sweep."""
        media_id = payload.get("media_id")
        urls = payload.get("urls")
        if not media_id or not isinstance(urls, list):
            return
        urls = [u for u in urls if isinstance(u, str)]
        if urls:
            logger.error(
                "Cleanup of %s gave up (%s); %d URL(s) kept for retry", short_id(media_id), error, len(urls)
            )
            self._sync_ledger(media_id, urls, [])
