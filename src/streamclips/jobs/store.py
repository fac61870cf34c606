from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..errors import JobNotFoundError, ResourceConflictError
from ..utils import utc_iso as _utc_iso
from .models import JobKind, JobStatus, ProcessingJob

_UNSET = object()

_ACTIVE = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


def _row_to_job(row: sqlite3.Row) -> ProcessingJob:
    d = dict(row)
    return ProcessingJob(
        id=d["id"],
        kind=JobKind(d["kind"]),
        resource_key=d["resource_key"],
        status=JobStatus(d["status"]),
        progress=int(d["progress"] or 0),
        attempts=int(d["attempts"] or 0),
        error=d["error"],
        payload=json.loads(d["payload_json"] or "{}"),
        result=json.loads(d["result_json"] or "{}"),
        created_at=d["created_at"],
        updated_at=d["updated_at"],
    )


class JobStore:
    """SQLite-backed ProcessingJob records.

    A partial unique index on resource_key over PENDING/PROCESSING rows makes
    the at-most-one-in-flight-per-resource rule hold even across processes.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processing_jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    resource_key TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress INTEGER DEFAULT 0,
                    attempts INTEGER DEFAULT 0,
                    error TEXT,
                    payload_json TEXT,
                    result_json TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_resource
                ON processing_jobs(resource_key)
                WHERE status IN ('PENDING', 'PROCESSING')
                """
            )

    def create_job(
        self,
        *,
        job_id: str,
        kind: JobKind,
        resource_key: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ProcessingJob:
        """Insert a PENDING job, or raise ResourceConflictError if the resource is busy."""
        now = _utc_iso()
        with self._lock:
            active = self.find_active(resource_key)
            if active is not None:
                raise ResourceConflictError(resource_key, active.id)
            try:
                with self._connect() as conn:
                    conn.execute(
                        """
                        INSERT INTO processing_jobs (
                            id, kind, resource_key, status, progress, attempts,
                            error, payload_json, result_json, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            job_id,
                            JobKind(kind).value,
                            resource_key,
                            JobStatus.PENDING.value,
                            0,
                            0,
                            None,
                            json.dumps(payload or {}),
                            "{}",
                            now,
                            now,
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise ResourceConflictError(resource_key) from e
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> ProcessingJob:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM processing_jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    def find_active(self, resource_key: str) -> Optional[ProcessingJob]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM processing_jobs WHERE resource_key = ? AND status IN (?, ?)",
                (resource_key, *_ACTIVE),
            ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        *,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        oldest_first: bool = False,
    ) -> List[ProcessingJob]:
        """Newest first by default; workers draining a queue ask for oldest_first."""
        order = "ASC" if oldest_first else "DESC"
        sql = "SELECT * FROM processing_jobs"
        params: List[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(JobStatus(status).value)
        sql += f" ORDER BY created_at {order}, rowid {order} LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def update_job(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        attempts: Optional[int] = None,
        error: Any = _UNSET,
        result: Any = _UNSET,
        expect_status: Optional[Iterable[JobStatus]] = None,
    ) -> Optional[ProcessingJob]:
        """Apply the given fields; returns None when expect_status did not match."""
        updates = []
        values: List[Any] = []
        if status is not None:
            updates.append("status = ?")
            values.append(JobStatus(status).value)
        if progress is not None:
            updates.append("progress = ?")
            values.append(int(progress))
        if attempts is not None:
            updates.append("attempts = ?")
            values.append(int(attempts))
        if error is not _UNSET:
            updates.append("error = ?")
            values.append(error)
        if result is not _UNSET:
            updates.append("result_json = ?")
            values.append(json.dumps(result or {}))
        updates.append("updated_at = ?")
        values.append(_utc_iso())

        sql = f"UPDATE processing_jobs SET {', '.join(updates)} WHERE id = ?"
        values.append(job_id)
        if expect_status is not None:
            expected = [JobStatus(s).value for s in expect_status]
            sql += f" AND status IN ({', '.join('?' for _ in expected)})"
            values.extend(expected)

        with self._lock:
            with self._connect() as conn:
                cur = conn.execute(sql, values)
                changed = cur.rowcount
        if changed == 0:
            # Distinguish "unknown job" from "guard did not match".
            self.get_job(job_id)
            return None
        return self.get_job(job_id)
