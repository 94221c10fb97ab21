"""
Application configuration using Pydantic Settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Event Media Pipeline"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ADMIN_API_KEY: str = ""

    # MongoDB
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "eventmedia"
    MEDIA_COLLECTION: str = "media"
    JOBS_COLLECTION: str = "jobs"

    # Redis (broker, pub/sub, failure ledger)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_QUEUE_PREFIX: str = "eventmedia-"
    CELERY_VISIBILITY_TIMEOUT: int = 600  # stall interval, seconds
    CELERY_TASK_TIME_LIMIT: int = 0
    CELERY_TASK_SOFT_TIME_LIMIT: int = 0

    # Object store (S3 compatible, fronted by a CDN)
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_S3_BUCKET: str = ""
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    STORAGE_PUBLIC_BASE_URL: str = ""
    STORAGE_LIST_PAGE_SIZE: int = 1000

    # Job queue
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_VARIANT_MS: int = 2000
    JOB_BACKOFF_CLEANUP_MS: int = 3000
    JOB_BACKOFF_MAX_MS: int = 60_000
    JOB_MAX_STALLED_COUNT: int = 1
    JOB_KEEP_COMPLETED: int = 20
    JOB_KEEP_FAILED: int = 50
    JOB_RETENTION_COMPLETED_HOURS: int = 24
    JOB_RETENTION_FAILED_HOURS: int = 72

    # Variant processing
    VARIANT_WORKER_CONCURRENCY: Optional[int] = None
    VARIANT_CONCURRENCY_CEILING: int = 6
    TRANSFORM_MAX_PARALLEL: int = 0  # 0 = number of CPUs

    # Storage cleanup
    CLEANUP_BATCH_SIZE: int = 3
    CLEANUP_MAX_CONCURRENT: int = 3
    CLEANUP_BULK_BATCH_SIZE: int = 5
    CLEANUP_BULK_MAX_CONCURRENT: int = 5
    CLEANUP_BATCH_DELAY_MS: int = 500
    CLEANUP_DELETE_RETRIES: int = 3
    CLEANUP_RETRY_DELAY_MS: int = 1000
    FAILED_DELETION_TTL_SECONDS: int = 86400 * 7

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
