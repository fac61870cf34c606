from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class JobKind(str, Enum):
    ANALYZE_VOD = "analyze_vod"
    EXTRACT_CLIP = "extract_clip"
    UPLOAD_CLIP = "upload_clip"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


@dataclass
class ProcessingJob:
    id: str
    kind: JobKind
    resource_key: str
    status: JobStatus
    progress: int
    attempts: int
    error: Optional[str]
    payload: Dict[str, Any]
    result: Dict[str, Any]
    created_at: str
    updated_at: str

    def status_view(self) -> Dict[str, Any]:
        """The shape pushed to progress subscribers and returned by status queries."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.status_view(),
            "resource_key": self.resource_key,
            "attempts": self.attempts,
            "payload": self.payload,
            "result": self.result,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class JobResult:
    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    # Only consulted on failure: retry with backoff instead of failing outright.
    retryable: bool = False

    @classmethod
    def ok(cls, **data: Any) -> "JobResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str, *, retryable: bool = False) -> "JobResult":
        return cls(success=False, error=error, retryable=retryable)
