from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from . import __version__
from .errors import JobNotFoundError, ResourceConflictError
from .jobs import JobKind, JobOrchestrator, JobStatus

log = logging.getLogger(__name__)


def create_app(orchestrator: JobOrchestrator, *, keepalive_s: float = 15.0) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        orchestrator.start()
        try:
            yield
        finally:
            orchestrator.shutdown(wait=False)

    app = FastAPI(title="streamclips", version=__version__, lifespan=lifespan)

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"ok": True, "version": __version__, "workers": orchestrator.running})

    @app.get("/api/jobs")
    def api_jobs(status: Optional[str] = None, limit: int = 100) -> JSONResponse:
        try:
            st = JobStatus(status.upper()) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"unknown_status: {status}")
        jobs = orchestrator.store.list_jobs(status=st, limit=max(1, min(limit, 1000)))
        return JSONResponse({"jobs": [j.to_dict() for j in jobs]})

    @app.post("/api/jobs")
    def api_create_job(body: Dict[str, Any] = Body(...)):  # type: ignore[valid-type]
        try:
            kind = JobKind(str(body.get("kind") or ""))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"unknown_kind: {body.get('kind')}")
        resource_key = str(body.get("resource_key") or "").strip()
        if not resource_key:
            raise HTTPException(status_code=400, detail="resource_key_required")
        payload = body.get("payload") or {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="payload_must_be_object")

        try:
            job_id = orchestrator.enqueue(kind, resource_key, payload)
        except ResourceConflictError as e:
            log.info("Rejected %s job: %s", kind.value, e)
            return JSONResponse(
                {"detail": "resource_busy", "resource_key": e.resource_key, "job_id": e.job_id},
                status_code=409,
            )
        return JSONResponse({"job_id": job_id, "job": orchestrator.get_status(job_id)})

    @app.get("/api/jobs/{job_id}")
    def api_job(job_id: str) -> JSONResponse:
        try:
            job = orchestrator.get(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="job_not_found")
        return JSONResponse(job.to_dict())

    @app.get("/api/jobs/{job_id}/events")
    def api_job_events(job_id: str):
        try:
            # Subscribe before the snapshot so no update falls in between.
            sub = orchestrator.subscribe(job_id)
            snapshot = orchestrator.get_status(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="job_not_found")

        def event_stream():
            try:
                yield f"data: {json.dumps({'type': 'job_update', 'job': snapshot})}\n\n"
                if JobStatus(snapshot["status"]).is_terminal:
                    return
                while True:
                    payload = sub.get(timeout=keepalive_s)
                    if payload is None:
                        # Terminal updates can be dropped on a full queue; re-check the record.
                        current = orchestrator.get_status(job_id)
                        if JobStatus(current["status"]).is_terminal:
                            yield f"data: {json.dumps({'type': 'job_update', 'job': current})}\n\n"
                            return
                        yield ": keep-alive\n\n"
                        continue
                    yield f"data: {json.dumps({'type': 'job_update', 'job': payload})}\n\n"
                    if JobStatus(payload["status"]).is_terminal:
                        return
            finally:
                sub.close()

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    return app
