"""
Pipeline error taxonomy.

Validation errors are never retried. Transient errors go back to the job
queue's backoff policy. StorageError carries a kind decided where the object
store call is made, so callers never inspect vendor error strings.
"""

from __future__ import annotations

from enum import Enum


class PipelineError(Exception):
    """Base class for media pipeline failures."""

    retryable = False


class ValidationError(PipelineError):
    """Corrupt, unreadable or unsupported source. Not retryable."""


class TransientError(PipelineError):
    """Temporary condition (network, quota). Retryable."""

    retryable = True


class PayloadValidationError(PipelineError):
    """Job payload failed schema validation at enqueue time."""


class QueueUnavailableError(PipelineError):
    """The broker rejected or could not accept a job."""

    retryable = True


class StorageErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"
    FATAL = "fatal"


_RETRYABLE_KINDS = {
    StorageErrorKind.RATE_LIMITED,
    StorageErrorKind.TIMEOUT,
    StorageErrorKind.TRANSIENT,
}


class StorageError(PipelineError):
    """Failure reported by the object store gateway."""

    def __init__(self, kind: StorageErrorKind, message: str, *, status_code: int = 0):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.kind in _RETRYABLE_KINDS

    @property
    def not_found(self) -> bool:
        return self.kind is StorageErrorKind.NOT_FOUND

    def __repr__(self) -> str:
        return f"StorageError(kind={self.kind.value!r}, message={str(self)!r})"
