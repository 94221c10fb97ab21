"""
Job ledger (sync, PyMongo).

Celery only carries a job_id; the payload, attempt counter and lifecycle
state live in the `jobs` collection. Every transition is a conditional
update so a redelivered message cannot move a job backwards.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pymongo import DESCENDING, ReturnDocument

from eventmedia.core.config import get_settings
from eventmedia.core.database import get_pymongo_db
from eventmedia.jobs.models import Job, JobState, JobType, QueueStats

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1200


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    if len(error) > MAX_ERROR_LENGTH:
        return error[:MAX_ERROR_LENGTH] + "..."
    return error


class JobStore:
    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_pymongo_db()[get_settings().JOBS_COLLECTION]
        return self._collection

    def create(self, job: Job) -> Job:
        self.collection.insert_one(job.to_document())
        return job

    def get(self, job_id: str) -> Optional[Job]:
        doc = self.collection.find_one({"job_id": job_id})
        return Job.from_document(doc) if doc else None

    def attach_task_id(self, job_id: str, task_id: str) -> None:
        self.collection.update_one(
            {"job_id": job_id},
            {"$set": {"celery_task_id": task_id, "updated_at": _now()}},
        )

    def claim(self, job_id: str) -> Optional[Job]:
        """waiting/delayed -> active, counting one attempt. None if not claimable."""
        now = _now()
        doc = self.collection.find_one_and_update(
            {"job_id": job_id, "state": {"$in": [JobState.WAITING.value, JobState.DELAYED.value]}},
            {
                "$set": {
                    "state": JobState.ACTIVE.value,
                    "started_at": now,
                    "updated_at": now,
                    "next_attempt_at": None,
                },
                "$inc": {"attempts": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return Job.from_document(doc) if doc else None

    def register_stall(self, job_id: str) -> Optional[Job]:
        """Record that an active job was redelivered because its worker went away."""
        now = _now()
        doc = self.collection.find_one_and_update(
            {"job_id": job_id, "state": JobState.ACTIVE.value},
            {
                "$set": {"started_at": now, "updated_at": now},
                "$inc": {"stalled_count": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return Job.from_document(doc) if doc else None

    def _finish_once(self, job_id: str, update: Dict[str, Any]) -> bool:
        """Terminal transition; a second finish (redelivery) is a no-op."""
        res = self.collection.update_one(
            {
                "job_id": job_id,
                "state": {"$nin": [JobState.COMPLETED.value, JobState.FAILED.value]},
            },
            update,
        )
        return res.modified_count > 0

    def complete(self, job_id: str, result: Optional[Dict[str, Any]]) -> bool:
        now = _now()
        return self._finish_once(
            job_id,
            {
                "$set": {
                    "state": JobState.COMPLETED.value,
                    "result": result,
                    "error": None,
                    "updated_at": now,
                    "finished_at": now,
                }
            },
        )

    def fail(self, job_id: str, error: str) -> bool:
        now = _now()
        return self._finish_once(
            job_id,
            {
                "$set": {
                    "state": JobState.FAILED.value,
                    "error": _truncate(error),
                    "updated_at": now,
                    "finished_at": now,
                }
            },
        )

    def schedule_retry(self, job_id: str, error: str, delay_ms: int) -> bool:
        now = _now()
        res = self.collection.update_one(
            {"job_id": job_id, "state": JobState.ACTIVE.value},
            {
                "$set": {
                    "state": JobState.DELAYED.value,
                    "error": _truncate(error),
                    "updated_at": now,
                    "next_attempt_at": now + timedelta(milliseconds=delay_ms),
                }
            },
        )
        return res.modified_count > 0

    def reset_failed(self, job_id: str) -> Optional[Job]:
        """Put a failed job back to waiting with a fresh attempt budget."""
        doc = self.collection.find_one_and_update(
            {"job_id": job_id, "state": JobState.FAILED.value},
            {
                "$set": {
                    "state": JobState.WAITING.value,
                    "attempts": 0,
                    "stalled_count": 0,
                    "error": None,
                    "result": None,
                    "started_at": None,
                    "finished_at": None,
                    "next_attempt_at": None,
                    "updated_at": _now(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return Job.from_document(doc) if doc else None

    def stats(self, job_type: JobType) -> QueueStats:
        pipeline = [
            {"$match": {"type": JobType(job_type).value}},
            {"$group": {"_id": "$state", "count": {"$sum": 1}}},
        ]
        counts = {row["_id"]: int(row["count"]) for row in self.collection.aggregate(pipeline)}
        stats = QueueStats(**{state.value: counts.get(state.value, 0) for state in JobState})
        stats.total = sum(counts.values())
        return stats

    def purge_finished(
        self, job_type: JobType, state: JobState, keep: int, older_than: timedelta
    ) -> int:
        """
        Delete finished jobs of one type/state that are older than
        `older_than` or fall outside the newest `keep`. Returns the number removed.
        """
        job_type, state = JobType(job_type), JobState(state)
        query = {"type": job_type.value, "state": state.value}
        newest = self.collection.find(query, {"job_id": 1}).sort("finished_at", DESCENDING).limit(keep)
        protected = [doc["job_id"] for doc in newest] if keep > 0 else []

        cutoff = _now() - older_than
        res = self.collection.delete_many(
            {**query, "$or": [{"finished_at": {"$lt": cutoff}}, {"job_id": {"$nin": protected}}]}
        )
        if res.deleted_count:
            logger.info("Purged %d %s %s jobs", res.deleted_count, job_type.value, state.value)
        return res.deleted_count


def purge_finished_jobs(store: JobStore, settings=None) -> Dict[str, int]:
    """Apply the retention policy to both job types. Returns removed counts."""
    settings = settings or get_settings()
    removed: Dict[str, int] = {}
    for job_type in JobType:
        removed[f"{job_type.value}_completed"] = store.purge_finished(
            job_type,
            JobState.COMPLETED,
            keep=settings.JOB_KEEP_COMPLETED,
            older_than=timedelta(hours=settings.JOB_RETENTION_COMPLETED_HOURS),
        )
        removed[f"{job_type.value}_failed"] = store.purge_finished(
            job_type,
            JobState.FAILED,
            keep=settings.JOB_KEEP_FAILED,
            older_than=timedelta(hours=settings.JOB_RETENTION_FAILED_HOURS),
        )
    return removed
