"""Asynchronous job lifecycle: PENDING -> PROCESSING -> COMPLETED | FAILED.

Jobs are persisted in a JobStore, executed on a bounded thread pool, and
broadcast to progress subscribers after every state change. Only one job per
resource_key can be PENDING or PROCESSING at a time; the worker that claimed
a job is the only writer of its record until it reaches a terminal state.
"""

from __future__ import annotations

import concurrent.futures
import logging
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from ..errors import InputError, TransientError
from ..ffmpeg import FFmpegError
from ..logging_config import job_logging
from ..utils import clamp
from .models import JobKind, JobResult, JobStatus, ProcessingJob
from .progress import ProgressHub, Subscription
from .store import JobStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 2.0
    max_delay_s: float = 300.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(self.max_delay_s, max(0.0, self.base_delay_s * (2 ** max(0, attempt - 1))))


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (InputError, ValueError)):
        return False
    # FFmpegError includes the watchdog timeout subclass.
    return isinstance(exc, (TransientError, FFmpegError, OSError, subprocess.SubprocessError, TimeoutError))


class JobContext:
    """Handle passed to processors: progress reporting and follow-up enqueueing."""

    def __init__(self, orchestrator: "JobOrchestrator", job: ProcessingJob) -> None:
        self.orchestrator = orchestrator
        self.job = job

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload

    def progress(self, percent: float) -> None:
        self.orchestrator.report_progress(self.job.id, percent)

    def enqueue(self, kind: JobKind, resource_key: str, payload: Optional[Dict[str, Any]] = None) -> str:
        return self.orchestrator.enqueue(kind, resource_key, payload)


class JobProcessor(Protocol):
    def process(self, ctx: JobContext) -> JobResult: ...


class JobOrchestrator:
    def __init__(
        self,
        *,
        store: JobStore,
        hub: Optional[ProgressHub] = None,
        processors: Optional[Dict[JobKind, JobProcessor]] = None,
        max_workers: int = 2,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.hub = hub or ProgressHub()
        self.processors: Dict[JobKind, JobProcessor] = dict(processors or {})
        self.max_workers = max(1, int(max_workers))
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @classmethod
    def from_profile(
        cls,
        profile: Dict[str, Any],
        *,
        processors: Optional[Dict[JobKind, JobProcessor]] = None,
        db_path: Optional[Path] = None,
    ) -> "JobOrchestrator":
        jobs_cfg = profile.get("jobs", {}) or {}
        return cls(
            store=JobStore(Path(db_path or jobs_cfg.get("db_path", "outputs/jobs.sqlite"))),
            hub=ProgressHub(queue_size=int(jobs_cfg.get("subscriber_queue_size", 100))),
            processors=processors,
            max_workers=int(jobs_cfg.get("max_workers", 2)),
            retry=RetryPolicy(
                max_attempts=int(jobs_cfg.get("max_attempts", 3)),
                base_delay_s=float(jobs_cfg.get("backoff_base_seconds", 2.0)),
                max_delay_s=float(jobs_cfg.get("backoff_max_seconds", 300.0)),
            ),
        )

    def register_processor(self, kind: JobKind, processor: JobProcessor) -> None:
        self.processors[JobKind(kind)] = processor

    # -- worker pool ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Start the pool and pick up the jobs a previous run left behind."""
        with self._lock:
            if self._executor is not None:
                return
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="streamclips-job",
            )
        self.recover_interrupted()
        for job in self.store.list_jobs(status=JobStatus.PENDING, limit=10_000, oldest_first=True):
            self._submit(job.id)

    def recover_interrupted(self) -> int:
        """Fail PROCESSING jobs whose worker is gone, releasing their resource keys.

        Only safe while no worker of this store is running.
        """
        stale = self.store.list_jobs(status=JobStatus.PROCESSING, limit=10_000, oldest_first=True)
        for job in stale:
            self.fail(job.id, "interrupted: worker stopped before the job finished")
        if stale:
            log.warning("Marked %d interrupted job(s) as FAILED", len(stale))
        return len(stale)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _submit(self, job_id: str) -> None:
        with self._lock:
            executor = self._executor
        if executor is None:
            return
        executor.submit(self._run_logged, job_id)

    def _run_logged(self, job_id: str) -> None:
        try:
            self.run_job(job_id)
        except Exception:
            log.exception("Job %s crashed outside its processor", job_id)

    # -- public contract -------------------------------------------------------

    def enqueue(self, kind: JobKind, resource_key: str, payload: Optional[Dict[str, Any]] = None) -> str:
        """Create a PENDING job; raises ResourceConflictError if resource_key is busy."""
        kind = JobKind(kind)
        job = self.store.create_job(
            job_id=uuid.uuid4().hex,
            kind=kind,
            resource_key=resource_key,
            payload=payload,
        )
        log.info("Enqueued %s job %s for %s", kind.value, job.id, resource_key)
        self._publish(job)
        self._submit(job.id)
        return job.id

    def get(self, job_id: str) -> ProcessingJob:
        return self.store.get_job(job_id)

    def get_status(self, job_id: str) -> Dict[str, Any]:
        return self.store.get_job(job_id).status_view()

    def subscribe(self, job_id: str) -> Subscription:
        self.store.get_job(job_id)
        return self.hub.subscribe(job_id)

    def report_progress(self, job_id: str, percent: float) -> None:
        pct = int(round(clamp(percent, 0.0, 100.0)))
        job = self.store.update_job(job_id, progress=pct, expect_status=(JobStatus.PENDING, JobStatus.PROCESSING))
        if job is not None:
            self._publish(job)

    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> bool:
        """PROCESSING -> COMPLETED. False (no-op) if the job already finished."""
        job = self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            error=None,
            result=result or {},
            expect_status=(JobStatus.PROCESSING,),
        )
        if job is None:
            log.debug("complete(%s) ignored: job not PROCESSING", job_id)
            return False
        log.info("Job %s completed", job_id)
        self._publish(job)
        return True

    def fail(self, job_id: str, error: str) -> bool:
        """PENDING/PROCESSING -> FAILED. False (no-op) if the job already finished."""
        job = self.store.update_job(
            job_id,
            status=JobStatus.FAILED,
            error=str(error),
            expect_status=(JobStatus.PENDING, JobStatus.PROCESSING),
        )
        if job is None:
            log.debug("fail(%s) ignored: job already terminal", job_id)
            return False
        log.warning("Job %s failed: %s", job_id, error)
        self._publish(job)
        return True

    # -- execution -------------------------------------------------------------

    def _publish(self, job: ProcessingJob) -> None:
        self.hub.publish(job.id, job.status_view())

    def _attempt(self, processor: JobProcessor, job: ProcessingJob) -> JobResult:
        try:
            return processor.process(JobContext(self, job))
        except Exception as exc:
            return JobResult.failed(f"{type(exc).__name__}: {exc}", retryable=is_transient(exc))

    def run_job(self, job_id: str) -> ProcessingJob:
        """Claim a PENDING job and run it to a terminal state in this thread."""
        with job_logging(job_id):
            return self._execute(job_id)

    def _execute(self, job_id: str) -> ProcessingJob:
        job = self.store.update_job(job_id, status=JobStatus.PROCESSING, expect_status=(JobStatus.PENDING,))
        if job is None:
            return self.store.get_job(job_id)
        self._publish(job)

        processor = self.processors.get(job.kind)
        if processor is None:
            self.fail(job_id, f"No processor registered for job kind: {job.kind.value}")
            return self.store.get_job(job_id)

        attempt = 0
        while True:
            attempt += 1
            job = self.store.update_job(job_id, attempts=job.attempts + 1) or self.store.get_job(job_id)
            result = self._attempt(processor, job)

            if result.success:
                self.complete(job_id, result.data)
                break
            error = result.error or "unknown error"
            if not result.retryable or attempt >= self.retry.max_attempts:
                self.fail(job_id, error)
                break

            delay = self.retry.delay(attempt)
            log.warning(
                "Job %s attempt %d/%d failed (%s); retrying in %.1fs",
                job_id,
                attempt,
                self.retry.max_attempts,
                error,
                delay,
            )
            self.store.update_job(job_id, error=error, expect_status=(JobStatus.PROCESSING,))
            self._sleep(delay)

        return self.store.get_job(job_id)

    def run_pending(self) -> int:
        """Drain PENDING jobs synchronously (including ones enqueued meanwhile)."""
        ran = 0
        while True:
            pending = self.store.list_jobs(status=JobStatus.PENDING, limit=1, oldest_first=True)
            if not pending:
                return ran
            self.run_job(pending[0].id)
            ran += 1
