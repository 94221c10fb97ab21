"""
Producer entry points called by the upload and delete flows.

Both are fire-and-forget: a broker outage is logged and reported as None,
never raised back into the HTTP request that triggered it.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Union

from eventmedia.core.errors import QueueUnavailableError
from eventmedia.jobs.models import CleanupJobPayload, JobType, VariantJobPayload, parse_payload
from eventmedia.jobs.queue import JobQueue, default_options

logger = logging.getLogger(__name__)

LARGE_FILE_BYTES = 5 * 1024 * 1024


def variant_priority(file_size: int, is_guest_upload: bool = False) -> int:
    """Small files first; guest uploads one step below organizer uploads."""
    priority = 8 if file_size < LARGE_FILE_BYTES else 3
    if is_guest_upload:
        priority -= 1
    return max(1, priority)


def cleanup_priority(is_bulk: bool = False) -> int:
    return 5 if is_bulk else 10


def _remove_temp_file(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp file %s: %s", path, e)


def enqueue_variant_job(
    queue: JobQueue, payload: Union[VariantJobPayload, Dict[str, Any]]
) -> Optional[str]:
    model = parse_payload(JobType.VARIANT, payload)
    options = default_options(JobType.VARIANT, queue.settings)
    options.priority = variant_priority(model.file_size, model.is_guest_upload)

    try:
        return queue.enqueue(JobType.VARIANT, model, options)
    except QueueUnavailableError as e:
        logger.error("Could not queue image processing for media %s: %s", model.media_id, e)
        # Nothing will ever pick the upload up; drop the local copy.
        _remove_temp_file(model.file_path)
        return None


def enqueue_cleanup_job(
    queue: JobQueue,
    payload: Union[CleanupJobPayload, Dict[str, Any]],
    broadcaster=None,
) -> Optional[str]:
    """
    Queue deletion of a media item's stored files.

    With a broadcaster, viewers are told the item is gone right away; the
    files themselves are removed by the cleanup worker afterwards.
    """
    model = parse_payload(JobType.CLEANUP, payload)
    options = default_options(JobType.CLEANUP, queue.settings)
    options.priority = cleanup_priority(model.is_bulk)

    if broadcaster is not None:
        broadcaster.publish_removed(model.media_id, model.event_id)

    try:
        return queue.enqueue(JobType.CLEANUP, model, options)
    except QueueUnavailableError as e:
        logger.error(
            "Could not queue cleanup of %d file(s) for media %s: %s", len(model.urls), model.media_id, e
        )
        return None
