"""Job models: queue jobs, typed payloads, API responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from eventmedia.core.errors import PayloadValidationError


class JobType(str, Enum):
    VARIANT = "variant"
    CLEANUP = "cleanup"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


# Celery task names, one per job type.
TASK_NAMES: Dict[JobType, str] = {
    JobType.VARIANT: "process-image",
    JobType.CLEANUP: "delete-files",
}


class BackoffPolicy(BaseModel):
    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(default=2000, ge=0)

    def delay_for(self, attempt: int, cap_ms: int) -> int:
        """Delay before the retry that follows `attempt` (1-based)."""
        if self.type == "fixed":
            delay = self.delay_ms
        else:
            delay = self.delay_ms * (2 ** max(0, attempt - 1))
        return int(min(delay, cap_ms))


class JobOptions(BaseModel):
    priority: int = Field(default=5, ge=1, le=10)  # higher = sooner
    delay_ms: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


class VariantJobPayload(BaseModel):
    media_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    album_id: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    original_filename: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)
    mime_type: str = Field(..., min_length=1)
    uploader_id: str = Field(..., min_length=1)
    uploader_name: str = ""
    is_guest_upload: bool = False


class CleanupJobPayload(BaseModel):
    media_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    urls: List[str] = Field(default_factory=list)
    uploader_id: str = Field(..., min_length=1)
    is_bulk: bool = False


JobPayload = Union[VariantJobPayload, CleanupJobPayload]

PAYLOAD_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.VARIANT: VariantJobPayload,
    JobType.CLEANUP: CleanupJobPayload,
}


def parse_payload(job_type: JobType, payload: Union[Dict[str, Any], BaseModel]) -> JobPayload:
    """Validate a payload against the model registered for the job type."""
    model = PAYLOAD_MODELS[JobType(job_type)]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        raise PayloadValidationError(
            f"{type(payload).__name__} is not a valid payload for {JobType(job_type).value} jobs"
        )
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise PayloadValidationError(f"Invalid {JobType(job_type).value} payload: {e}") from e


class Job(BaseModel):
    job_id: str
    type: JobType
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 5
    attempts: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    state: JobState = JobState.WAITING
    stalled_count: int = 0
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    celery_task_id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="python")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Job":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)


class JobCreateResponse(BaseModel):
    job_id: str
    state: JobState


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    total: int = 0
