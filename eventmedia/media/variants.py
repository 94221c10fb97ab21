"""Variant spec table: every derivative produced for an uploaded image."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class VariantSpec:
    size_name: str
    target_width: int
    quality: int
    format: str  # "webp" | "jpeg"

    @property
    def content_type(self) -> str:
        return "image/webp" if self.format == "webp" else "image/jpeg"


VARIANT_SPECS: Tuple[VariantSpec, ...] = (
    # Thumbnails, mobile grid
    VariantSpec("small", 400, 70, "webp"),
    VariantSpec("small", 400, 75, "jpeg"),
    # Desktop feed, cards
    VariantSpec("medium", 800, 80, "webp"),
    VariantSpec("medium", 800, 85, "jpeg"),
    # Lightbox / full view
    VariantSpec("large", 1200, 85, "webp"),
    VariantSpec("large", 1200, 90, "jpeg"),
)

# Low-quality placeholder shown while the full set is produced. Not a variant slot.
PREVIEW_SPEC = VariantSpec("preview", 320, 60, "jpeg")

SUPPORTED_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/tiff",
    "image/tif",
}


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    return (mime_type or "").lower() in SUPPORTED_MIME_TYPES

