"""Remote path convention shared with the object store."""

from __future__ import annotations

from pathlib import PurePath
from typing import List

VARIANT_SIZES = ("small", "medium", "large")


def event_root(event_id: str) -> str:
    return f"events/{event_id}"


def originals_folder(event_id: str) -> str:
    return f"{event_root(event_id)}/originals"


def previews_folder(event_id: str) -> str:
    return f"{event_root(event_id)}/previews"


def variants_folder(event_id: str, size_name: str) -> str:
    if size_name not in VARIANT_SIZES:
        raise ValueError(f"Unknown variant size: {size_name}")
    return f"{event_root(event_id)}/variants/{size_name}"


def event_prefixes(event_id: str) -> List[str]:
    """Every folder that can hold objects for media of this event."""
    return [
        originals_folder(event_id),
        *(variants_folder(event_id, size) for size in VARIANT_SIZES),
        previews_folder(event_id),
    ]


def original_file_name(media_id: str, original_filename: str) -> str:
    ext = PurePath(original_filename or "").suffix.lower() or ".jpg"
    return f"{media_id}_original{ext}"


def preview_file_name(media_id: str) -> str:
    return f"{media_id}_preview.jpg"


def variant_file_name(media_id: str, size_name: str, fmt: str) -> str:
    return f"{media_id}_{size_name}.{fmt}"
