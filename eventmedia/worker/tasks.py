"""Celery tasks (sync): thin wrappers handing a job_id to the job runner."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from celery.signals import worker_process_shutdown

from eventmedia.context import AppContext
from eventmedia.core.database import Database
from eventmedia.jobs.harness import JobRunner
from eventmedia.jobs.models import TASK_NAMES, JobType
from eventmedia.jobs.queue import broker_priority
from eventmedia.jobs.store import purge_finished_jobs as purge_jobs
from eventmedia.worker.celery_app import celery_app

logger = logging.getLogger(__name__)

_loop: Optional[asyncio.AbstractEventLoop] = None
_context: Optional[AppContext] = None
_runner: Optional[JobRunner] = None


def _run_async(coro):
    """
    Run async code from a sync Celery task.

    The loop lives as long as the worker process: the Motor client is bound
    to the loop it was created on.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    _loop.run_until_complete(Database.connect())
    return _loop.run_until_complete(coro)


def get_context() -> AppContext:
    global _context
    if _context is None:
        _context = AppContext.create()
    return _context


def get_runner() -> JobRunner:
    global _runner
    if _runner is None:
        _runner = get_context().runner(_run_async)
    return _runner


@worker_process_shutdown.connect
def _close_loop(**kwargs):
    global _loop
    if _loop is not None and not _loop.is_closed():
        _loop.run_until_complete(Database.disconnect())
        _loop.close()
    _loop = None


def _execute(task, job_type: JobType, job_id: str) -> Dict[str, Any]:
    decision = get_runner().run(job_type, job_id)
    if decision.should_retry:
        raise task.retry(
            countdown=decision.delay_ms / 1000.0,
            priority=broker_priority(decision.priority),
        )
    return decision.as_dict()


@celery_app.task(name=TASK_NAMES[JobType.VARIANT], bind=True, acks_late=True, max_retries=None)
def process_image(self, job_id: str) -> Dict[str, Any]:
    """Generate preview and variants for one uploaded image. Only job_id travels via the broker."""
    return _execute(self, JobType.VARIANT, job_id)


@celery_app.task(name=TASK_NAMES[JobType.CLEANUP], bind=True, acks_late=True, max_retries=None)
def delete_files(self, job_id: str) -> Dict[str, Any]:
    """Delete the stored files of a removed media item."""
    return _execute(self, JobType.CLEANUP, job_id)


@celery_app.task(name="purge-finished-jobs", acks_late=True)
def purge_finished_jobs() -> Dict[str, int]:
    """Apply job retention. Scheduled hourly via Celery Beat."""
    removed = purge_jobs(get_context().jobs)
    if any(removed.values()):
        logger.info(f"Job retention purge: {removed}")
    return removed
