"""
Variant worker handler.

For one uploaded image: store the original, a small preview and the six
size/format variants, then write the final state to the media record in a
single update and tell the event's viewers the photo is ready.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo.errors import PyMongoError

from eventmedia.core.errors import PipelineError, TransientError, ValidationError
from eventmedia.core.logging import short_id
from eventmedia.jobs.harness import JobContext, JobResult
from eventmedia.jobs.models import VariantJobPayload
from eventmedia.media.models import (
    ImageVariant,
    ImageVariants,
    MediaProcessingState,
    ProcessedMedia,
    SizeVariants,
)
from eventmedia.media.transform import ImageInfo, bytes_to_mb, probe, transform
from eventmedia.media.variants import PREVIEW_SPEC, VARIANT_SPECS, VariantSpec, is_supported_mime_type
from eventmedia.progress import reporter as stages
from eventmedia.progress.reporter import ProgressReporter
from eventmedia.storage.paths import (
    original_file_name,
    originals_folder,
    preview_file_name,
    previews_folder,
    variant_file_name,
    variants_folder,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _first_failure(results) -> Optional[BaseException]:
    """A non-retryable failure wins over retryable ones."""
    errors = [r for r in results if isinstance(r, BaseException)]
    if not errors:
        return None
    for err in errors:
        if isinstance(err, PipelineError) and not err.retryable:
            return err
    return errors[0]


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, PipelineError):
        return bool(error.retryable)
    # Anything we did not classify gets another attempt.
    return True


async def remove_temp_file(path: str) -> None:
    try:
        await asyncio.to_thread(os.unlink, path)
        logger.debug("Removed temp file %s", path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp file %s: %s", path, e)


class VariantProcessor:
    def __init__(self, repository, store, broadcaster, transform_slots: int = 0):
        self.repository = repository
        self.store = store
        self.broadcaster = broadcaster
        self.transform_slots = transform_slots or os.cpu_count() or 2

    async def process(self, payload: VariantJobPayload, ctx: JobContext) -> JobResult:
        media_id = payload.media_id
        started = time.monotonic()
        started_at = _now()

        floor = 0
        if ctx.attempt > 1:
            try:
                floor = await self.repository.get_progress(media_id)
            except PyMongoError as e:
                logger.warning("Could not read stored progress for %s: %s", short_id(media_id), e)

        progress = ProgressReporter(
            media_id,
            payload.event_id,
            self.repository,
            self.broadcaster,
            floor=floor,
            context={"uploaded_by": payload.uploader_name, "filename": payload.original_filename},
        )

        logger.info(
            "Processing %s (%s, %.2fMB) attempt %d/%d",
            short_id(media_id),
            payload.original_filename,
            bytes_to_mb(payload.file_size),
            ctx.attempt,
            ctx.max_attempts,
        )

        try:
            processed = await self._run(payload, ctx, progress, started, started_at)
        except Exception as e:
            return await self._handle_failure(payload, ctx, e, started)

        logger.info(
            "Processed %s in %dms (%d variants)",
            short_id(media_id),
            processed.processing_time_ms,
            processed.variants.count(),
        )
        return JobResult.ok(
            {
                "media_id": media_id,
                "final_url": processed.final_url,
                "preview_url": processed.preview_url,
                "variants_count": processed.variants.count(),
                "processing_time_ms": processed.processing_time_ms,
            }
        )

    async def _run(
        self,
        payload: VariantJobPayload,
        ctx: JobContext,
        progress: ProgressReporter,
        started: float,
        started_at: datetime,
    ) -> ProcessedMedia:
        media_id = payload.media_id
        await self.repository.mark_processing(media_id, ctx.job_id, started_at)
        await progress.report("uploading", stages.UPLOADING_START)

        if not is_supported_mime_type(payload.mime_type):
            raise ValidationError(f"Unsupported file type: {payload.mime_type}")

        data = await self._read_source(payload.file_path)
        info = await asyncio.to_thread(probe, data)
        await progress.report("uploading", stages.UPLOADING_DONE)

        slots = asyncio.Semaphore(self.transform_slots)
        done = 0

        async def build_variant(spec: VariantSpec) -> Tuple[VariantSpec, ImageVariant]:
            nonlocal done
            variant = await self._build_variant(data, spec, payload, slots)
            done += 1
            await progress.variants_progress(done, len(VARIANT_SPECS))
            return spec, variant

        results = await asyncio.gather(
            self._store_original(data, info, payload),
            self._build_preview(data, payload, progress, slots),
            *(build_variant(spec) for spec in VARIANT_SPECS),
            return_exceptions=True,
        )
        failure = _first_failure(results)
        if failure is not None:
            raise failure

        original, preview_url, built = results[0], results[1], results[2:]
        await progress.report("finalizing", stages.FINALIZING)

        variants = organize_variants(original, built)

        missing = variants.missing_slots()
        if missing:
            logger.warning("Media %s finished with missing variants: %s", media_id, missing)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        processed = ProcessedMedia(
            media_id=media_id,
            final_url=original.url,
            preview_url=preview_url,
            width=info.width,
            height=info.height,
            variants=variants,
            processing_time_ms=elapsed_ms,
        )
        state = MediaProcessingState(
            status="completed",
            current_stage="completed",
            progress_percentage=stages.COMPLETED,
            started_at=started_at,
            completed_at=_now(),
            variants_generated=not missing,
            variants_count=variants.count(),
            retry_count=ctx.attempt - 1,
            processing_time_ms=elapsed_ms,
            job_id=ctx.job_id,
        )
        await self.repository.save_completed(processed, state)

        self.broadcaster.publish_completed(media_id, payload.event_id, original.url, variants.urls())
        await progress.report("completed", stages.COMPLETED)
        await remove_temp_file(payload.file_path)
        return processed

    async def _read_source(self, path: str) -> bytes:
        def read() -> bytes:
            with open(path, "rb") as fh:
                return fh.read()

        try:
            return await asyncio.to_thread(read)
        except FileNotFoundError as e:
            raise ValidationError(f"Uploaded file not found: {path}") from e
        except OSError as e:
            raise TransientError(f"Could not read uploaded file: {e}") from e

    async def _store_original(
        self, data: bytes, info: ImageInfo, payload: VariantJobPayload
    ) -> ImageVariant:
        url = await self.store.upload(
            data,
            originals_folder(payload.event_id),
            original_file_name(payload.media_id, payload.original_filename),
            tags=self._tags(payload, "original"),
            content_type=payload.mime_type,
        )
        return ImageVariant(
            url=url,
            width=info.width,
            height=info.height,
            size_mb=bytes_to_mb(len(data)),
            format=info.format,
        )

    async def _build_preview(
        self,
        data: bytes,
        payload: VariantJobPayload,
        progress: ProgressReporter,
        slots: asyncio.Semaphore,
    ) -> str:
        await progress.report("preview_creating", stages.PREVIEW_START)
        async with slots:
            preview = await asyncio.to_thread(transform, data, PREVIEW_SPEC)
        return await self.store.upload(
            preview.data,
            previews_folder(payload.event_id),
            preview_file_name(payload.media_id),
            tags=self._tags(payload, "preview"),
            content_type=PREVIEW_SPEC.content_type,
        )

    async def _build_variant(
        self,
        data: bytes,
        spec: VariantSpec,
        payload: VariantJobPayload,
        slots: asyncio.Semaphore,
    ) -> ImageVariant:
        async with slots:
            out = await asyncio.to_thread(transform, data, spec)
        url = await self.store.upload(
            out.data,
            variants_folder(payload.event_id, spec.size_name),
            variant_file_name(payload.media_id, spec.size_name, spec.format),
            tags=self._tags(payload, f"{spec.size_name}_{spec.format}"),
            content_type=spec.content_type,
        )
        return ImageVariant(
            url=url, width=out.width, height=out.height, size_mb=out.size_mb, format=spec.format
        )

    @staticmethod
    def _tags(payload: VariantJobPayload, role: str) -> Dict[str, str]:
        return {
            "event": payload.event_id,
            "album": payload.album_id,
            "media": payload.media_id,
            "role": role,
        }

    async def _handle_failure(
        self, payload: VariantJobPayload, ctx: JobContext, error: BaseException, started: float
    ) -> JobResult:
        media_id = payload.media_id
        retryable = _is_retryable(error)
        terminal = not retryable or ctx.is_final_attempt
        message = str(error) or type(error).__name__

        if isinstance(error, PipelineError):
            logger.error("Processing %s failed: %r", short_id(media_id), error)
        else:
            logger.exception("Unexpected error processing %s", short_id(media_id), exc_info=error)

        try:
            if terminal:
                await self.repository.mark_failed(
                    media_id,
                    message,
                    retry_count=ctx.attempt - 1,
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                )
            else:
                await self.repository.mark_retrying(media_id, message, retry_count=ctx.attempt)
        except PyMongoError as e:
            logger.error("Could not record failure for %s: %s", short_id(media_id), e)

        if terminal:
            self.broadcaster.publish_failed(media_id, payload.event_id, message)
            await remove_temp_file(payload.file_path)

        if not retryable:
            return JobResult.fatal(error)

        # On a non-final attempt the uploaded file stays for the next one.
        return JobResult.retryable(error)

    async def on_terminal_failure(
        self, payload: Mapping[str, Any], ctx: JobContext, error: str
    ) -> None:
        """
        The runner failed the job without a result from `process` (stall limit,
        unreadable payload, an escaped exception). Settle the record, tell the
        event and drop the upload the same way a terminal failure in `process` does.
        """
        media_id = payload.get("media_id")
        event_id = payload.get("event_id")
        file_path = payload.get("file_path")

        if media_id:
            try:
                await self.repository.mark_failed(media_id, error, retry_count=max(0, ctx.attempt - 1))
            except PyMongoError as e:
                logger.error("Could not record failure for %s: %s", short_id(media_id), e)
            if event_id:
                self.broadcaster.publish_failed(media_id, event_id, error)
        if isinstance(file_path, str) and file_path:
            await remove_temp_file(file_path)


def organize_variants(
    original: ImageVariant, built: List[Tuple[VariantSpec, ImageVariant]]
) -> ImageVariants:
    variants = ImageVariants(
        original=original, small=SizeVariants(), medium=SizeVariants(), large=SizeVariants()
    )
    for spec, variant in built:
        setattr(getattr(variants, spec.size_name), spec.format, variant)
    return variants
