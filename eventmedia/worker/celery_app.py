"""Celery app bootstrap (Redis broker): one queue per job type."""

from __future__ import annotations

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger, after_setup_task_logger

from eventmedia.core.config import get_settings
from eventmedia.core.logging import setup_logging
from eventmedia.jobs.models import JobType


settings = get_settings()

QUEUE_PREFIX = (settings.CELERY_QUEUE_PREFIX or "").strip()
VARIANT_QUEUE = f"{QUEUE_PREFIX}variants"
CLEANUP_QUEUE = f"{QUEUE_PREFIX}cleanup"

QUEUES = {
    JobType.VARIANT: VARIANT_QUEUE,
    JobType.CLEANUP: CLEANUP_QUEUE,
}


def queue_name(job_type: JobType) -> str:
    return QUEUES[JobType(job_type)]


celery_app = Celery(
    "eventmedia",
    broker=(settings.CELERY_BROKER_URL or settings.REDIS_URL).strip(),
    include=["eventmedia.worker.tasks"],
)

transport_options: dict = {
    # A message not acked within this window is redelivered (stalled job).
    "visibility_timeout": int(settings.CELERY_VISIBILITY_TIMEOUT),
    # Redis emulates priorities with one list per step; 0 is consumed first.
    "priority_steps": list(range(10)),
    "queue_order_strategy": "priority",
    "sep": ":",
}

celery_app.conf.update(
    broker_transport_options=transport_options,
    task_default_queue=VARIANT_QUEUE,
    task_routes={
        "process-image": {"queue": VARIANT_QUEUE},
        "delete-files": {"queue": CLEANUP_QUEUE},
        "purge-finished-jobs": {"queue": CLEANUP_QUEUE},
    },
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_ignore_result=True,
)

if settings.CELERY_TASK_TIME_LIMIT:
    celery_app.conf.task_time_limit = int(settings.CELERY_TASK_TIME_LIMIT)
if settings.CELERY_TASK_SOFT_TIME_LIMIT:
    celery_app.conf.task_soft_time_limit = int(settings.CELERY_TASK_SOFT_TIME_LIMIT)


# =============================================================================
# Celery Beat Schedule - Periodic Tasks
# =============================================================================

celery_app.conf.beat_schedule = {
    # Drop old finished jobs from the ledger every hour
    "purge-finished-jobs": {
        "task": "purge-finished-jobs",
        "schedule": crontab(minute=0),
        "options": {"queue": CLEANUP_QUEUE},
    },
}


@after_setup_logger.connect
@after_setup_task_logger.connect
def _configure_worker_logging(logger=None, loglevel=None, **kwargs):
    level = logging.getLevelName(loglevel) if isinstance(loglevel, int) else loglevel
    setup_logging(level=level, logger=logger)
