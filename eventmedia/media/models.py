"""Media processing models."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


ProcessingStatus = Literal["pending", "processing", "completed", "failed"]
ProcessingStage = Literal[
    "uploading",
    "preview_creating",
    "processing",
    "variants_creating",
    "finalizing",
    "completed",
    "failed",
]
ImageFormat = Literal["webp", "jpeg"]
SizeName = Literal["small", "medium", "large"]


class ImageVariant(BaseModel):
    url: str
    width: int
    height: int
    size_mb: float
    format: str


class MediaProcessingState(BaseModel):
    """The processing sub-document of a media record owned by the pipeline."""

    status: ProcessingStatus = "pending"
    current_stage: ProcessingStage = "uploading"
    progress_percentage: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    variants_generated: bool = False
    variants_count: int = 0
    retry_count: int = 0
    processing_time_ms: Optional[int] = None
    job_id: Optional[str] = None


class SizeVariants(BaseModel):
    webp: Optional[ImageVariant] = None
    jpeg: Optional[ImageVariant] = None


class ImageVariants(BaseModel):
    """Variant slots nested under a media record."""

    original: ImageVariant
    small: SizeVariants = Field(default_factory=SizeVariants)
    medium: SizeVariants = Field(default_factory=SizeVariants)
    large: SizeVariants = Field(default_factory=SizeVariants)

    def count(self) -> int:
        return sum(
            1
            for size in (self.small, self.medium, self.large)
            for slot in (size.webp, size.jpeg)
            if slot is not None
        )

    def missing_slots(self) -> list:
        missing = []
        for size_name in ("small", "medium", "large"):
            size = getattr(self, size_name)
            for fmt in ("webp", "jpeg"):
                if getattr(size, fmt) is None:
                    missing.append(f"{size_name}.{fmt}")
        return missing

    def urls(self) -> Dict[str, str]:
        """Flat `{size}_{format}` -> url map used in completion events."""
        out: Dict[str, str] = {}
        for size_name in ("small", "medium", "large"):
            size = getattr(self, size_name)
            for fmt in ("webp", "jpeg"):
                variant = getattr(size, fmt)
                if variant is not None:
                    out[f"{size_name}_{fmt}"] = variant.url
        return out


class ProcessedMedia(BaseModel):
    """Outcome of a successful variant job."""

    media_id: str
    final_url: str
    preview_url: Optional[str] = None
    width: int
    height: int
    variants: ImageVariants
    processing_time_ms: int
