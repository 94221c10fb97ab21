import asyncio
from datetime import datetime, timezone

from bson import ObjectId

from eventmedia.media.models import ImageVariant, ImageVariants, MediaProcessingState, ProcessedMedia
from eventmedia.media.repository import MediaRepository, media_filter


class UpdateResult:
    matched_count = 1


class RecordingCollection:
    def __init__(self, doc=None):
        self.updates = []
        self.doc = doc

    async def update_one(self, flt, update):
        self.updates.append((flt, update))
        return UpdateResult()

    async def find_one(self, flt, projection=None):
        return self.doc


def test_media_filter_accepts_object_ids_and_strings():
    oid = "65f000000000000000000001"
    assert media_filter(oid) == {"_id": ObjectId(oid)}
    assert media_filter("legacy-id") == {"_id": "legacy-id"}


def test_progress_update_uses_max():
    col = RecordingCollection()
    asyncio.run(MediaRepository(col).update_progress("m1", "processing", 55))

    _, update = col.updates[0]
    assert update["$max"] == {"processing.progress_percentage": 55}
    assert update["$set"]["processing.current_stage"] == "processing"


def test_get_progress_defaults_to_zero():
    assert asyncio.run(MediaRepository(RecordingCollection()).get_progress("m1")) == 0
    col = RecordingCollection({"processing": {"progress_percentage": 70}})
    assert asyncio.run(MediaRepository(col).get_progress("m1")) == 70


def test_completion_is_one_full_update():
    col = RecordingCollection()
    original = ImageVariant(url="https://cdn.test/o.jpg", width=2000, height=1000, size_mb=1.5, format="jpeg")
    processed = ProcessedMedia(
        media_id="m1",
        final_url=original.url,
        preview_url="https://cdn.test/p.jpg",
        width=2000,
        height=1000,
        variants=ImageVariants(original=original),
        processing_time_ms=1234,
    )
    state = MediaProcessingState(
        status="completed",
        current_stage="completed",
        progress_percentage=100,
        completed_at=datetime.now(timezone.utc),
        processing_time_ms=1234,
    )

    asyncio.run(MediaRepository(col).save_completed(processed, state))

    assert len(col.updates) == 1
    _, update = col.updates[0]
    fields = update["$set"]
    assert fields["url"] == "https://cdn.test/o.jpg"
    assert fields["processing"]["status"] == "completed"
    assert fields["processing"]["progress_percentage"] == 100
    assert fields["metadata.aspect_ratio"] == 2.0
    assert fields["image_variants"]["original"]["width"] == 2000
