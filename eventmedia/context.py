"""Collaborators shared by the handlers of one worker process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from eventmedia.core.config import Settings, get_settings
from eventmedia.jobs.harness import JobRunner
from eventmedia.jobs.models import JobType
from eventmedia.jobs.queue import JobQueue
from eventmedia.jobs.store import JobStore
from eventmedia.media.repository import MediaRepository
from eventmedia.media.service import VariantProcessor
from eventmedia.progress.broadcaster import RedisBroadcaster
from eventmedia.storage.cleanup import StorageCleaner
from eventmedia.storage.gateway import S3ObjectStore
from eventmedia.storage.ledger import FailedDeletionLedger


@dataclass
class AppContext:
    settings: Settings
    jobs: Any  # JobStore
    queue: JobQueue
    media: Any  # MediaRepository
    store: Any  # ObjectStore
    broadcaster: Any  # Broadcaster
    failed_deletions: Any  # FailedDeletionLedger

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "AppContext":
        settings = settings or get_settings()
        jobs = JobStore()
        return cls(
            settings=settings,
            jobs=jobs,
            queue=JobQueue(jobs, settings=settings),
            media=MediaRepository(),
            store=S3ObjectStore(settings),
            broadcaster=RedisBroadcaster(),
            failed_deletions=FailedDeletionLedger(),
        )

    def variant_processor(self) -> VariantProcessor:
        return VariantProcessor(
            self.media,
            self.store,
            self.broadcaster,
            transform_slots=self.settings.TRANSFORM_MAX_PARALLEL,
        )

    def cleaner(self) -> StorageCleaner:
        return StorageCleaner(self.store, self.failed_deletions, self.settings)

    def runner(self, run_async: Callable[[Awaitable], Any]) -> JobRunner:
        processor, cleaner = self.variant_processor(), self.cleaner()
        return JobRunner(
            self.jobs,
            {JobType.VARIANT: processor.process, JobType.CLEANUP: cleaner.process},
            run_async,
            self.settings,
            failure_hooks={
                JobType.VARIANT: processor.on_terminal_failure,
                JobType.CLEANUP: cleaner.on_terminal_failure,
            },
        )
