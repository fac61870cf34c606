"""Exception taxonomy shared by the extractor and the job orchestrator.

- InputError: malformed requests (bad time range, unknown preset). Never retried.
- TransientError: environment hiccups (source unreachable, engine crash). Retried.
- ResourceConflictError: a job for the same resource is already in flight.
"""

from __future__ import annotations

from typing import Optional


class StreamclipsError(Exception):
    pass


class InputError(StreamclipsError, ValueError):
    pass


class TransientError(StreamclipsError):
    pass


class ResourceConflictError(StreamclipsError):
    def __init__(self, resource_key: str, job_id: Optional[str] = None) -> None:
        self.resource_key = resource_key
        self.job_id = job_id
        msg = f"resource_busy: {resource_key}"
        if job_id:
            msg += f" (job {job_id})"
        super().__init__(msg)


class JobNotFoundError(StreamclipsError, KeyError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"job_not_found: {job_id}")

    def __str__(self) -> str:
        return self.args[0]


class EngineUnavailableError(StreamclipsError, RuntimeError):
    pass
