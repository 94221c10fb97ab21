"""Job queue facade: ledger row first, then a Celery message carrying only the job_id."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel

from eventmedia.core.config import Settings, get_settings
from eventmedia.core.errors import QueueUnavailableError
from eventmedia.jobs.models import (
    TASK_NAMES,
    BackoffPolicy,
    Job,
    JobOptions,
    JobState,
    JobType,
    QueueStats,
    parse_payload,
)

logger = logging.getLogger(__name__)

# (task_name, job_id, queue_name, broker_priority, countdown_seconds) -> celery task id
Sender = Callable[[str, str, str, int, Optional[float]], str]


def broker_priority(priority: int) -> int:
    """
    Map job priority (1..10, higher first) onto the Redis transport's
    0..9 scale, where 0 is consumed first.
    """
    return max(0, min(9, 10 - int(priority)))


def default_options(job_type: JobType, settings: Optional[Settings] = None) -> JobOptions:
    settings = settings or get_settings()
    delay = (
        settings.JOB_BACKOFF_VARIANT_MS
        if JobType(job_type) is JobType.VARIANT
        else settings.JOB_BACKOFF_CLEANUP_MS
    )
    return JobOptions(
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        backoff=BackoffPolicy(type="exponential", delay_ms=delay),
    )


def _celery_sender(
    task_name: str, job_id: str, queue: str, priority: int, countdown: Optional[float]
) -> str:
    from eventmedia.worker.celery_app import celery_app

    async_result = celery_app.send_task(
        task_name, args=[job_id], queue=queue, priority=priority, countdown=countdown
    )
    return async_result.id


def _queue_name(job_type: JobType) -> str:
    from eventmedia.worker.celery_app import queue_name

    return queue_name(job_type)


class JobQueue:
    def __init__(
        self,
        store,
        sender: Optional[Sender] = None,
        settings: Optional[Settings] = None,
        queue_namer: Optional[Callable[[JobType], str]] = None,
    ):
        self.store = store
        self._send = sender or _celery_sender
        self._queue_name = queue_namer or _queue_name
        self.settings = settings or get_settings()

    def enqueue(
        self,
        job_type: JobType,
        payload: Union[Dict[str, Any], BaseModel],
        options: Optional[JobOptions] = None,
    ) -> str:
        """
        Validate, persist and dispatch a job. Returns the job_id.

        Raises PayloadValidationError for a bad payload and
        QueueUnavailableError if the broker could not take the message.
        """
        job_type = JobType(job_type)
        model = parse_payload(job_type, payload)
        opts = options or default_options(job_type, self.settings)

        now = datetime.now(timezone.utc)
        job = Job(
            job_id=str(ObjectId()),
            type=job_type,
            name=TASK_NAMES[job_type],
            payload=model.model_dump(),
            priority=opts.priority,
            max_attempts=opts.max_attempts,
            backoff=opts.backoff,
            state=JobState.DELAYED if opts.delay_ms else JobState.WAITING,
            created_at=now,
            updated_at=now,
            next_attempt_at=now + timedelta(milliseconds=opts.delay_ms) if opts.delay_ms else None,
        )
        self.store.create(job)
        self._dispatch(job, opts.delay_ms / 1000.0 if opts.delay_ms else None)

        logger.info(
            "Enqueued %s job %s (priority %d, media %s)",
            job_type.value,
            job.job_id,
            job.priority,
            job.payload.get("media_id"),
        )
        return job.job_id

    def _dispatch(self, job: Job, countdown: Optional[float]) -> None:
        try:
            task_id = self._send(
                TASK_NAMES[job.type],
                job.job_id,
                self._queue_name(job.type),
                broker_priority(job.priority),
                countdown,
            )
        except Exception as e:
            self.store.fail(job.job_id, f"Failed to enqueue job: {type(e).__name__}")
            raise QueueUnavailableError(f"Failed to enqueue {job.type.value} job: {e}") from e
        self.store.attach_task_id(job.job_id, task_id)

    def get(self, job_id: str) -> Optional[Job]:
        return self.store.get(job_id)

    def stats(self, job_type: Optional[JobType] = None) -> Dict[str, QueueStats]:
        types = [JobType(job_type)] if job_type else list(JobType)
        return {t.value: self.store.stats(t) for t in types}

    def retry_failed(self, job_id: str) -> Optional[Job]:
        """Re-run a failed job with a fresh attempt budget. None if it is not failed."""
        job = self.store.reset_failed(job_id)
        if job is None:
            return None
        self._dispatch(job, None)
        logger.info("Re-queued failed %s job %s", job.type.value, job_id)
        return job
