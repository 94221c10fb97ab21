"""Core module - config, database, errors, logging."""

from eventmedia.core.config import get_settings, Settings
from eventmedia.core.database import Database, get_pymongo_db
from eventmedia.core.errors import (
    PipelineError,
    ValidationError,
    TransientError,
    PayloadValidationError,
    QueueUnavailableError,
    StorageError,
    StorageErrorKind,
)
from eventmedia.core.logging import setup_logging

__all__ = [
    "get_settings",
    "Settings",
    "Database",
    "get_pymongo_db",
    "PipelineError",
    "ValidationError",
    "TransientError",
    "PayloadValidationError",
    "QueueUnavailableError",
    "StorageError",
    "StorageErrorKind",
    "setup_logging",
]
