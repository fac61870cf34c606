"""Persistent processing jobs with retries and live progress."""

from .models import JobKind, JobResult, JobStatus, ProcessingJob
from .orchestrator import JobContext, JobOrchestrator, RetryPolicy, is_transient
from .progress import ProgressHub, Subscription
from .store import JobStore

__all__ = [
    "JobKind",
    "JobResult",
    "JobStatus",
    "ProcessingJob",
    "JobContext",
    "JobOrchestrator",
    "RetryPolicy",
    "is_transient",
    "ProgressHub",
    "Subscription",
    "JobStore",
]
