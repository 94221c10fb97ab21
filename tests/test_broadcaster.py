import asyncio

from pymongo.errors import AutoReconnect

from eventmedia.progress.broadcaster import GENERIC_FAILURE_MESSAGE, RedisBroadcaster
from eventmedia.progress.reporter import ProgressReporter


def _by_channel(fake_redis):
    out = {}
    for channel, message in fake_redis.published:
        out.setdefault(channel, []).append(message)
    return out


def test_progress_goes_to_admins_only(fake_redis):
    RedisBroadcaster(fake_redis).publish_progress(
        "m1", "e1", "processing", 42, {"uploaded_by": "Asha", "filename": "a.jpg"}
    )

    channels = _by_channel(fake_redis)
    assert list(channels) == ["event:e1:admin"]
    message = channels["event:e1:admin"][0]
    assert message["type"] == "processing_progress"
    assert message["data"]["mediaId"] == "m1"
    assert message["data"]["progressPercentage"] == 42
    assert message["data"]["uploadedBy"] == "Asha"
    assert "timestamp" in message


def test_completion_reaches_both_audiences(fake_redis):
    RedisBroadcaster(fake_redis).publish_completed(
        "m1", "e1", "https://cdn.test/o.jpg", {"small_webp": "https://cdn.test/s.webp"}
    )

    channels = _by_channel(fake_redis)
    assert set(channels) == {"event:e1:admin", "event:e1:guest"}
    for messages in channels.values():
        assert messages[0]["type"] == "processing_complete"
        assert messages[0]["data"]["finalUrl"] == "https://cdn.test/o.jpg"


def test_guests_get_generic_failure(fake_redis):
    RedisBroadcaster(fake_redis).publish_failed("m1", "e1", "S3 AccessDenied on bucket event-media")

    channels = _by_channel(fake_redis)
    assert channels["event:e1:admin"][0]["data"]["error"] == "S3 AccessDenied on bucket event-media"
    assert channels["event:e1:guest"][0]["data"]["error"] == GENERIC_FAILURE_MESSAGE


def test_removal_reaches_both_audiences(fake_redis):
    RedisBroadcaster(fake_redis).publish_removed("m1", "e1")
    assert {c for c, _ in fake_redis.published} == {"event:e1:admin", "event:e1:guest"}
    assert all(m["type"] == "media_removed" for _, m in fake_redis.published)


def test_publish_errors_are_swallowed(fake_redis):
    fake_redis.fail = True
    broadcaster = RedisBroadcaster(fake_redis)

    broadcaster.publish_progress("m1", "e1", "uploading", 5)
    broadcaster.publish_failed("m1", "e1", "boom")

    assert fake_redis.published == []


def test_no_subscribers_is_fine(fake_redis):
    fake_redis.subscribers = 0
    RedisBroadcaster(fake_redis).publish_removed("m1", "e1")
    assert len(fake_redis.published) == 2


def test_reporter_never_goes_backwards(media_repo, broadcaster):
    reporter = ProgressReporter("m1", "e1", media_repo, broadcaster, floor=40)

    async def run():
        await reporter.report("uploading", 5)
        await reporter.report("processing", 60)
        await reporter.report("preview_creating", 30)
        await reporter.report("finalizing", 85)

    asyncio.run(run())

    assert broadcaster.percentages() == [40, 60, 60, 85]
    assert media_repo.processing("m1")["progress_percentage"] == 85


def test_reporter_skips_duplicate_reports(media_repo, broadcaster):
    reporter = ProgressReporter("m1", "e1", media_repo, broadcaster)

    async def run():
        await reporter.report("processing", 50)
        await reporter.report("processing", 50)
        await reporter.report("processing", 20)

    asyncio.run(run())
    assert broadcaster.percentages() == [50]


def test_reporter_survives_database_errors(broadcaster):
    class BrokenRepository:
        async def update_progress(self, media_id, stage, percentage):
            raise AutoReconnect("primary stepped down")

    reporter = ProgressReporter("m1", "e1", BrokenRepository(), broadcaster)
    assert asyncio.run(reporter.report("uploading", 5)) == 5
    assert broadcaster.percentages() == [5]


def test_variants_progress_scales_between_30_and_80(media_repo, broadcaster):
    reporter = ProgressReporter("m1", "e1", media_repo, broadcaster)

    async def run():
        for done in range(1, 7):
            await reporter.variants_progress(done, 6)

    asyncio.run(run())
    values = broadcaster.percentages()
    assert values[0] > 30
    assert values[-1] == 80
