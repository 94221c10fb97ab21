"""Pipeline ops endpoints: queue stats, job inspection and manual retry."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Depends, Path
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from eventmedia.core.dependencies import require_admin_api_key
from eventmedia.core.errors import QueueUnavailableError
from eventmedia.core.exceptions import ConflictException, NotFoundException, QueueUnavailableException
from eventmedia.jobs.models import Job, JobCreateResponse, QueueStats
from eventmedia.jobs.queue import JobQueue
from eventmedia.jobs.store import JobStore
from eventmedia.storage.ledger import FailedDeletionLedger


router = APIRouter(
    prefix="/pipeline",
    tags=["Pipeline"],
    dependencies=[Depends(require_admin_api_key)],
)


@lru_cache
def get_job_queue() -> JobQueue:
    return JobQueue(JobStore())


@lru_cache
def get_failed_deletions() -> FailedDeletionLedger:
    return FailedDeletionLedger()


# Sync handlers: the ledger and Redis clients are blocking, FastAPI runs these in a threadpool.


@router.get("/jobs/stats", response_model=Dict[str, QueueStats])
def job_stats(queue: JobQueue = Depends(get_job_queue)):
    try:
        return queue.stats()
    except PyMongoError as e:
        raise QueueUnavailableException(f"Job ledger unavailable: {type(e).__name__}")


@router.get("/jobs/{job_id}", response_model=Job)
def get_job(
    job_id: str = Path(..., description="Job ID"),
    queue: JobQueue = Depends(get_job_queue),
):
    job = queue.get(job_id)
    if job is None:
        raise NotFoundException("Job not found")
    return job


@router.post("/jobs/{job_id}/retry", response_model=JobCreateResponse)
def retry_job(
    job_id: str = Path(..., description="Job ID"),
    queue: JobQueue = Depends(get_job_queue),
):
    existing = queue.get(job_id)
    if existing is None:
        raise NotFoundException("Job not found")

    try:
        job = queue.retry_failed(job_id)
    except QueueUnavailableError:
        raise QueueUnavailableException()
    if job is None:
        raise ConflictException("Only failed jobs can be retried.")

    return JobCreateResponse(job_id=job.job_id, state=job.state)


@router.get("/failed-deletions/{media_id}")
def get_failed_deletions_for_media(
    media_id: str = Path(..., description="Media ID"),
    ledger: FailedDeletionLedger = Depends(get_failed_deletions),
) -> Dict[str, Any]:
    try:
        record = ledger.get(media_id)
    except RedisError as e:
        raise QueueUnavailableException(f"Redis unavailable: {type(e).__name__}")
    if record is None:
        raise NotFoundException("No failed deletions recorded for this media")
    return record
