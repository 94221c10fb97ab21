"""
Job runner shared by both workers.

A Celery task hands the runner a job_id; the runner claims the job in the
ledger, validates the payload, runs the async handler and turns the
handler's JobResult into the next state:

    ok                       -> completed
    fatal                    -> failed (no further attempts)
    retryable, budget left   -> delayed, retried after exponential backoff
    retryable, budget spent  -> failed

Redelivered messages for finished jobs are acknowledged without running
the handler again. When the runner fails a job on its own (stall limit,
unreadable payload, an exception escaping the handler on the last attempt)
the job type's failure hook gets the stored payload so the handler's side
effects can be settled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Optional, Tuple

from eventmedia.core.config import Settings, get_settings
from eventmedia.core.errors import PayloadValidationError
from eventmedia.jobs.models import BackoffPolicy, JobPayload, JobState, JobType, parse_payload

logger = logging.getLogger(__name__)

STALLED_ERROR = "job stalled more than allowable limit"


@dataclass(frozen=True)
class JobContext:
    job_id: str
    attempt: int  # 1-based
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass(frozen=True)
class JobResult:
    kind: Literal["ok", "retryable", "fatal"]
    value: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: Optional[Dict[str, Any]] = None) -> "JobResult":
        return cls("ok", value=value)

    @classmethod
    def retryable(cls, error: BaseException) -> "JobResult":
        return cls("retryable", error=error)

    @classmethod
    def fatal(cls, error: BaseException) -> "JobResult":
        return cls("fatal", error=error)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


Handler = Callable[[JobPayload, JobContext], Awaitable[JobResult]]
# (raw stored payload, context, error message)
FailureHook = Callable[[Mapping[str, Any], JobContext, str], Awaitable[None]]


@dataclass(frozen=True)
class Decision:
    job_id: str
    state: JobState
    attempts: int = 0
    priority: int = 5
    delay_ms: int = 0
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    skipped: bool = False

    @property
    def should_retry(self) -> bool:
        return self.state is JobState.DELAYED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "attempts": self.attempts,
            "delay_ms": self.delay_ms,
            "error": self.error,
            "result": self.result,
            "skipped": self.skipped,
        }


def decide(
    result: JobResult,
    attempts: int,
    max_attempts: int,
    backoff: BackoffPolicy,
    cap_ms: int,
) -> Tuple[JobState, int]:
    """(state, delay_ms) for a handler outcome."""
    if result.kind == "ok":
        return JobState.COMPLETED, 0
    if result.kind == "retryable" and attempts < max_attempts:
        return JobState.DELAYED, backoff.delay_for(attempts, cap_ms)
    return JobState.FAILED, 0


@dataclass
class JobRunner:
    store: Any  # JobStore
    handlers: Mapping[JobType, Handler]
    run_async: Callable[[Awaitable], Any]
    settings: Settings = field(default_factory=get_settings)
    failure_hooks: Mapping[JobType, FailureHook] = field(default_factory=dict)

    def _give_up(self, job, error: str) -> None:
        if not self.store.fail(job.job_id, error):
            return
        hook = self.failure_hooks.get(job.type)
        if hook is None:
            return
        ctx = JobContext(job_id=job.job_id, attempt=job.attempts, max_attempts=job.max_attempts)
        try:
            self.run_async(hook(job.payload, ctx, error))
        except Exception:
            logger.exception("Failure hook for %s job %s raised", job.type.value, job.job_id)

    def run(self, job_type: JobType, job_id: str) -> Decision:
        job_type = JobType(job_type)
        job = self.store.claim(job_id)

        if job is None:
            existing = self.store.get(job_id)
            if existing is None:
                logger.warning("Job %s not found; dropping message", job_id)
                return Decision(job_id=job_id, state=JobState.FAILED, error="job_not_found", skipped=True)

            if existing.state in (JobState.COMPLETED, JobState.FAILED):
                logger.info("Job %s already %s; ignoring redelivery", job_id, existing.state.value)
                return Decision(
                    job_id=job_id,
                    state=existing.state,
                    attempts=existing.attempts,
                    priority=existing.priority,
                    error=existing.error,
                    result=existing.result,
                    skipped=True,
                )

            # Still "active": the previous worker died mid-job and the broker redelivered.
            job = self.store.register_stall(job_id)
            if job is None:
                return Decision(job_id=job_id, state=existing.state, skipped=True)
            logger.warning("Job %s stalled (count=%d)", job_id, job.stalled_count)
            if job.stalled_count > self.settings.JOB_MAX_STALLED_COUNT:
                self._give_up(job, STALLED_ERROR)
                return Decision(
                    job_id=job_id,
                    state=JobState.FAILED,
                    attempts=job.attempts,
                    priority=job.priority,
                    error=STALLED_ERROR,
                )

        if job.type is not job_type:
            error = f"job is {job.type.value}, not {job_type.value}"
            self._give_up(job, error)
            return Decision(job_id=job_id, state=JobState.FAILED, attempts=job.attempts, error=error)

        try:
            payload = parse_payload(job.type, job.payload)
        except PayloadValidationError as e:
            self._give_up(job, str(e))
            return Decision(job_id=job_id, state=JobState.FAILED, attempts=job.attempts, error=str(e))

        handler = self.handlers[job.type]
        ctx = JobContext(job_id=job_id, attempt=job.attempts, max_attempts=job.max_attempts)

        logger.info(
            "Running %s job %s (attempt %d/%d)", job.type.value, job_id, job.attempts, job.max_attempts
        )
        escaped = False
        try:
            result = self.run_async(handler(payload, ctx))
        except Exception as e:
            escaped = True
            logger.exception("Unhandled error in %s job %s", job.type.value, job_id)
            result = JobResult.retryable(e)

        state, delay_ms = decide(
            result, job.attempts, job.max_attempts, job.backoff, self.settings.JOB_BACKOFF_MAX_MS
        )

        if state is JobState.COMPLETED:
            self.store.complete(job_id, result.value)
        elif state is JobState.DELAYED:
            self.store.schedule_retry(job_id, result.error_message or "", delay_ms)
            logger.warning(
                "Job %s attempt %d failed (%s); retrying in %dms",
                job_id,
                job.attempts,
                result.error_message,
                delay_ms,
            )
        else:
            if escaped:
                # The handler never got to record its own failure.
                self._give_up(job, result.error_message or "failed")
            else:
                self.store.fail(job_id, result.error_message or "failed")
            logger.error(
                "Job %s failed after %d attempt(s): %s", job_id, job.attempts, result.error_message
            )

        return Decision(
            job_id=job_id,
            state=state,
            attempts=job.attempts,
            priority=job.priority,
            delay_ms=delay_ms,
            error=result.error_message,
            result=result.value,
        )
