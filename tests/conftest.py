"""Shared fakes and fixtures for the pipeline tests."""

import io
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from PIL import Image
from redis.exceptions import RedisError

from eventmedia.core.config import Settings
from eventmedia.core.errors import StorageError, StorageErrorKind
from eventmedia.jobs.models import Job, JobState, JobType, QueueStats
from eventmedia.storage.gateway import StoredObject
from eventmedia.storage.ledger import FailedDeletionLedger


CDN = "https://cdn.test"


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def make_image_bytes(width: int, height: int, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    color = (200, 80, 40, 128) if mode == "RGBA" else (200, 80, 40)
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def upload_file(tmp_path):
    """Write an uploaded image to a temp file, return its path."""

    def _make(width=2000, height=1500, data: Optional[bytes] = None, name="photo.jpg"):
        path = tmp_path / name
        path.write_bytes(data if data is not None else make_image_bytes(width, height))
        return str(path)

    return _make


def variant_payload(file_path: str, **overrides) -> dict:
    payload = {
        "media_id": "65f000000000000000000001",
        "event_id": "evt1",
        "album_id": "alb1",
        "file_path": file_path,
        "original_filename": "IMG_0001.JPG",
        "file_size": 1_200_000,
        "mime_type": "image/jpeg",
        "uploader_id": "user1",
        "uploader_name": "Asha",
        "is_guest_upload": False,
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return Settings(
        AWS_S3_BUCKET="event-media",
        STORAGE_PUBLIC_BASE_URL=CDN,
        ADMIN_API_KEY="secret",
        TRANSFORM_MAX_PARALLEL=2,
        VARIANT_WORKER_CONCURRENCY=None,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeMediaRepository:
    def __init__(self):
        self.docs: Dict[str, dict] = {}

    def _doc(self, media_id):
        return self.docs.setdefault(media_id, {"processing": {"progress_percentage": 0}})

    def processing(self, media_id) -> dict:
        return self._doc(media_id)["processing"]

    async def get_progress(self, media_id):
        return int(self.processing(media_id).get("progress_percentage") or 0)

    async def mark_processing(self, media_id, job_id, started_at):
        p = self.processing(media_id)
        p.update(status="processing", current_stage="uploading", job_id=job_id, error_message=None)
        p.setdefault("started_at", started_at)

    async def update_progress(self, media_id, stage, percentage):
        p = self.processing(media_id)
        p["current_stage"] = stage
        p["progress_percentage"] = max(int(p.get("progress_percentage") or 0), int(percentage))

    async def save_completed(self, processed, state):
        doc = self._doc(processed.media_id)
        doc["url"] = processed.final_url
        doc["preview_url"] = processed.preview_url
        doc["image_variants"] = processed.variants.model_dump()
        doc["metadata"] = {"width": processed.width, "height": processed.height}
        doc["processing"] = state.model_dump()

    async def mark_failed(self, media_id, error_message, retry_count, processing_time_ms=None):
        self.processing(media_id).update(
            status="failed", current_stage="failed", error_message=error_message, retry_count=retry_count
        )

    async def mark_retrying(self, media_id, error_message, retry_count):
        self.processing(media_id).update(
            status="pending", error_message=error_message, retry_count=retry_count
        )


class FakeObjectStore:
    """In-memory bucket keyed by object key; URLs carry a cache-busting query."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.upload_calls = 0
        self.fail_upload_calls: Dict[int, Exception] = {}
        self.delete_calls: List[str] = []
        self.delete_errors: Dict[str, List[Exception]] = {}
        self.list_error: Optional[Exception] = None

    def url_for(self, key: str) -> str:
        return f"{CDN}/{key}"

    def seed(self, key: str, data: bytes = b"x") -> str:
        self.objects[key] = data
        return f"{self.url_for(key)}?v=seed"

    async def upload(self, data, folder, file_name, tags=None, content_type="application/octet-stream"):
        self.upload_calls += 1
        error = self.fail_upload_calls.get(self.upload_calls)
        if error is not None:
            raise error
        key = f"{folder}/{file_name}"
        self.objects[key] = data
        self.content_types[key] = content_type
        return f"{self.url_for(key)}?v={self.upload_calls}"

    async def delete(self, object_id):
        self.delete_calls.append(object_id)
        queued = self.delete_errors.get(object_id)
        if queued:
            raise queued.pop(0)
        if object_id not in self.objects:
            raise StorageError(StorageErrorKind.NOT_FOUND, f"NoSuchKey: {object_id}", status_code=404)
        del self.objects[object_id]

    async def list_objects(self, prefix):
        if self.list_error is not None:
            raise self.list_error
        folder = prefix.rstrip("/") + "/"
        return [
            StoredObject(object_id=key, url=self.url_for(key), size=len(data))
            for key, data in self.objects.items()
            if key.startswith(folder)
        ]


class FakeBroadcaster:
    def __init__(self):
        self.events: List[tuple] = []

    def publish_progress(self, media_id, event_id, stage, percentage, context=None):
        self.events.append(("progress", media_id, stage, percentage))

    def publish_completed(self, media_id, event_id, final_url, variant_urls):
        self.events.append(("completed", media_id, final_url, dict(variant_urls)))

    def publish_failed(self, media_id, event_id, error_message):
        self.events.append(("failed", media_id, error_message))

    def publish_removed(self, media_id, event_id):
        self.events.append(("removed", media_id, event_id))

    def of(self, kind: str) -> List[tuple]:
        return [e for e in self.events if e[0] == kind]

    def percentages(self) -> List[int]:
        return [e[3] for e in self.of("progress")]


class InMemoryJobStore:
    """Same transitions as JobStore, on a dict."""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}

    def _update(self, job_id, **changes) -> Job:
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        job = self.jobs[job_id].model_copy(update=changes)
        self.jobs[job_id] = job
        return job

    def create(self, job):
        self.jobs[job.job_id] = job
        return job

    def get(self, job_id):
        return self.jobs.get(job_id)

    def attach_task_id(self, job_id, task_id):
        self._update(job_id, celery_task_id=task_id)

    def claim(self, job_id):
        job = self.jobs.get(job_id)
        if job is None or job.state not in (JobState.WAITING, JobState.DELAYED):
            return None
        return self._update(
            job_id, state=JobState.ACTIVE, attempts=job.attempts + 1, next_attempt_at=None
        )

    def register_stall(self, job_id):
        job = self.jobs.get(job_id)
        if job is None or job.state is not JobState.ACTIVE:
            return None
        return self._update(job_id, stalled_count=job.stalled_count + 1)

    def _finish(self, job_id, **changes):
        job = self.jobs.get(job_id)
        if job is None or job.state in (JobState.COMPLETED, JobState.FAILED):
            return False
        self._update(job_id, finished_at=datetime.now(timezone.utc), **changes)
        return True

    def complete(self, job_id, result):
        return self._finish(job_id, state=JobState.COMPLETED, result=result, error=None)

    def fail(self, job_id, error):
        return self._finish(job_id, state=JobState.FAILED, error=error)

    def schedule_retry(self, job_id, error, delay_ms):
        job = self.jobs.get(job_id)
        if job is None or job.state is not JobState.ACTIVE:
            return False
        self._update(
            job_id,
            state=JobState.DELAYED,
            error=error,
            next_attempt_at=datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms),
        )
        return True

    def reset_failed(self, job_id):
        job = self.jobs.get(job_id)
        if job is None or job.state is not JobState.FAILED:
            return None
        return self._update(
            job_id,
            state=JobState.WAITING,
            attempts=0,
            stalled_count=0,
            error=None,
            result=None,
            finished_at=None,
        )

    def stats(self, job_type):
        stats = QueueStats()
        for job in self.jobs.values():
            if job.type is JobType(job_type):
                setattr(stats, job.state.value, getattr(stats, job.state.value) + 1)
                stats.total += 1
        return stats


class FakeRedis:
    """The handful of redis-py calls the pipeline makes."""

    def __init__(self, subscribers: int = 1):
        self.published: List[tuple] = []
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.subscribers = subscribers
        self.fail = False

    def publish(self, channel, message):
        if self.fail:
            raise RedisError("connection refused")
        self.published.append((channel, json.loads(message)))
        return self.subscribers

    def get(self, key):
        if self.fail:
            raise RedisError("connection refused")
        return self.values.get(key)

    def setex(self, key, ttl, value):
        if self.fail:
            raise RedisError("connection refused")
        self.values[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, key):
        if self.fail:
            raise RedisError("connection refused")
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0


@pytest.fixture
def media_repo():
    return FakeMediaRepository()


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def failure_ledger():
    return FailedDeletionLedger(FakeRedis(), ttl_seconds=604800)


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()
