import asyncio

import pytest

from eventmedia.core.errors import StorageError, StorageErrorKind
from eventmedia.jobs.harness import JobContext
from eventmedia.jobs.models import CleanupJobPayload
from eventmedia.storage.cleanup import StorageCleaner


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def cleaner(object_store, failure_ledger, settings, sleeps):
    return StorageCleaner(object_store, failure_ledger, settings, sleep=sleeps)


def _payload(urls, media_id="m1"):
    return CleanupJobPayload(media_id=media_id, event_id="e1", urls=urls, uploader_id="u1")


def _run(cleaner, payload, attempt=1):
    return asyncio.run(cleaner.process(payload, JobContext("job-1", attempt, 3)))


def _seed_media(object_store, media_id="m1"):
    keys = [
        f"events/e1/originals/{media_id}_original.jpg",
        f"events/e1/previews/{media_id}_preview.jpg",
        f"events/e1/variants/small/{media_id}_small.webp",
        f"events/e1/variants/small/{media_id}_small.jpeg",
        f"events/e1/variants/medium/{media_id}_medium.webp",
        f"events/e1/variants/medium/{media_id}_medium.jpeg",
        f"events/e1/variants/large/{media_id}_large.webp",
    ]
    return [object_store.seed(key) for key in keys]


def test_partial_listing_deletes_existing_and_skips_missing(cleaner, object_store, sleeps):
    """10 URLs, 7 objects still stored: 7 deleted, 3 already gone."""
    urls = _seed_media(object_store)
    urls += [
        "https://cdn.test/events/e1/variants/large/m1_large.jpeg?v=9",
        "https://cdn.test/events/e1/originals/m1_old.jpg",
        "https://cdn.test/events/e1/previews/m1_old_preview.jpg?updatedAt=1",
    ]

    result = _run(cleaner, _payload(urls))

    assert result.kind == "ok"
    report = result.value
    assert report["total"] == 10
    assert len(report["deleted"]) == 7
    assert len(report["already_deleted"]) == 3
    assert report["failed"] == []
    assert report["success_rate"] == 100.0
    assert object_store.objects == {}

    # 7 objects in batches of 3, with a pause between batches.
    assert report["batches"] == 3
    assert sleeps.calls == [0.5, 0.5]


def test_second_run_finds_everything_already_deleted(cleaner, object_store):
    urls = _seed_media(object_store)
    _run(cleaner, _payload(urls))
    object_store.delete_calls.clear()

    report = _run(cleaner, _payload(urls)).value

    assert report["deleted"] == []
    assert len(report["already_deleted"]) == len(urls)
    assert report["failed"] == []
    assert object_store.delete_calls == []


def test_urls_differing_only_in_query_delete_one_object(cleaner, object_store):
    object_store.seed("events/e1/originals/m1_original.jpg")
    urls = [
        "https://cdn.test/events/e1/originals/m1_original.jpg?v=1",
        "https://cdn.test/events/e1/originals/m1_original.jpg?v=2",
    ]

    report = _run(cleaner, _payload(urls)).value

    assert object_store.delete_calls == ["events/e1/originals/m1_original.jpg"]
    assert sorted(report["deleted"]) == sorted(urls)


def test_not_found_on_delete_counts_as_already_deleted(cleaner, object_store):
    url = object_store.seed("events/e1/originals/m1_original.jpg")
    object_store.delete_errors["events/e1/originals/m1_original.jpg"] = [
        StorageError(StorageErrorKind.NOT_FOUND, "NoSuchKey", status_code=404)
    ]

    report = _run(cleaner, _payload([url])).value

    assert report["already_deleted"] == [url]
    assert report["failed"] == []


def test_rate_limited_delete_retries_with_linear_backoff(cleaner, object_store, sleeps):
    key = "events/e1/originals/m1_original.jpg"
    url = object_store.seed(key)
    object_store.delete_errors[key] = [
        StorageError(StorageErrorKind.RATE_LIMITED, "SlowDown", status_code=503),
        StorageError(StorageErrorKind.TIMEOUT, "RequestTimeout", status_code=408),
    ]

    report = _run(cleaner, _payload([url])).value

    assert report["deleted"] == [url]
    assert sleeps.calls == [1.0, 2.0]


def test_persistent_failure_is_recorded_for_later(cleaner, object_store, failure_ledger):
    key = "events/e1/originals/m1_original.jpg"
    url = object_store.seed(key)
    ok_url = object_store.seed("events/e1/previews/m1_preview.jpg")
    object_store.delete_errors[key] = [
        StorageError(StorageErrorKind.TRANSIENT, "503") for _ in range(10)
    ]

    result = _run(cleaner, _payload([url, ok_url]))

    assert result.kind == "ok"
    assert result.value["failed"] == [url]
    assert result.value["deleted"] == [ok_url]
    # one try plus three retries
    assert object_store.delete_calls.count(key) == 4
    assert failure_ledger.get("m1")["failedUrls"] == [url]


def test_fatal_delete_error_is_not_retried(cleaner, object_store):
    key = "events/e1/originals/m1_original.jpg"
    url = object_store.seed(key)
    object_store.delete_errors[key] = [StorageError(StorageErrorKind.FATAL, "AccessDenied", status_code=403)]

    report = _run(cleaner, _payload([url])).value

    assert report["failed"] == [url]
    assert object_store.delete_calls == [key]


def test_listing_failure_marks_everything_failed_and_retries(cleaner, object_store, failure_ledger):
    urls = _seed_media(object_store)
    object_store.list_error = StorageError(StorageErrorKind.TRANSIENT, "503 listing")

    result = _run(cleaner, _payload(urls))

    assert result.kind == "retryable"
    assert failure_ledger.get("m1")["failedUrls"] == urls
    assert object_store.delete_calls == []


def test_repeated_listing_failures_merge_without_counting_sweeps(cleaner, object_store, failure_ledger):
    urls = _seed_media(object_store)
    object_store.list_error = StorageError(StorageErrorKind.TIMEOUT, "timeout")

    _run(cleaner, _payload(urls[:2]))
    _run(cleaner, _payload(urls[1:3]), attempt=2)

    record = failure_ledger.get("m1")
    assert record["failedUrls"] == urls[:3]
    # Job attempts are not sweep retries.
    assert record["retryCount"] == 0


def test_empty_url_list_is_a_no_op(cleaner, object_store):
    result = _run(cleaner, _payload([]))
    assert result.kind == "ok"
    assert result.value["total"] == 0
    assert object_store.delete_calls == []


def test_successful_retry_clears_the_failure_record(cleaner, object_store, failure_ledger):
    urls = _seed_media(object_store)[:3]
    object_store.list_error = StorageError(StorageErrorKind.TRANSIENT, "503 listing")
    assert _run(cleaner, _payload(urls)).kind == "retryable"
    assert failure_ledger.get("m1")["failedUrls"] == urls

    object_store.list_error = None
    result = _run(cleaner, _payload(urls), attempt=2)

    assert result.kind == "ok"
    assert len(result.value["deleted"]) == 3
    assert result.value["failed"] == []
    assert failure_ledger.get("m1") is None


def test_partial_retry_keeps_only_what_still_failed(cleaner, object_store, failure_ledger):
    urls = _seed_media(object_store)[:3]
    object_store.list_error = StorageError(StorageErrorKind.TRANSIENT, "503 listing")
    _run(cleaner, _payload(urls))

    object_store.list_error = None
    stuck = "events/e1/originals/m1_original.jpg"
    object_store.delete_errors[stuck] = [StorageError(StorageErrorKind.FATAL, "AccessDenied", status_code=403)]
    result = _run(cleaner, _payload(urls), attempt=2)

    assert result.value["failed"] == [urls[0]]
    assert failure_ledger.get("m1")["failedUrls"] == [urls[0]]


def test_clean_run_leaves_no_record(cleaner, object_store, failure_ledger):
    urls = _seed_media(object_store)
    _run(cleaner, _payload(urls))
    assert failure_ledger.get("m1") is None


def test_bulk_removals_use_larger_batches(cleaner, object_store, sleeps):
    urls = _seed_media(object_store)
    payload = CleanupJobPayload(media_id="m1", event_id="e1", urls=urls, uploader_id="u1", is_bulk=True)

    result = asyncio.run(cleaner.process(payload, JobContext("job-1", 1, 3)))

    # 7 objects: 5 + 2 in bulk mode, 3 + 3 + 1 otherwise.
    assert result.value["batches"] == 2
    assert cleaner.batch_limits(is_bulk=True) == (5, 5)
    assert cleaner.batch_limits() == (3, 3)


def test_given_up_job_keeps_every_url_for_the_sweep(cleaner, failure_ledger):
    raw = {"media_id": "m1", "event_id": "e1", "urls": ["https://cdn.test/a.jpg"], "uploader_id": "u1"}

    asyncio.run(cleaner.on_terminal_failure(raw, JobContext("job-1", 1, 3), "stalled"))

    assert failure_ledger.get("m1")["failedUrls"] == ["https://cdn.test/a.jpg"]
