"""End-to-end pipeline tests: analyze_vod -> extract_clip -> upload_clip.

A LocalLibrary provides the VOD and receives the clips; a fake transcode
engine stands in for ffmpeg.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

import pytest

from streamclips.clips import ClipExtractor
from streamclips.errors import EngineUnavailableError
from streamclips.jobs import JobKind, JobOrchestrator, JobStatus, JobStore
from streamclips.jobs.processors import build_default_processors, clip_resource, vod_resource
from streamclips.profile import default_profile
from streamclips.storage import LocalLibrary


def _spike_rows() -> List[dict]:
    rows = []
    for start in (0, 120_000):
        for i in range(6):
            rows.append({"timestamp": start + i * 50, "username": f"u{start}_{i}", "message": "LUL what a play"})
    for ts in (30_000, 60_000, 90_000, 150_000):
        rows.append({"timestamp": ts, "username": f"lurker{ts}", "message": "hello there"})
    return rows


def _make_vod(root: Path, vod_id: str, rows: List[dict]) -> None:
    vod_dir = root / "vods" / vod_id
    vod_dir.mkdir(parents=True)
    (vod_dir / "chat.json").write_text(json.dumps(rows), encoding="utf-8")
    (vod_dir / "vod.json").write_text(
        json.dumps({"duration_seconds": 180, "video_url": "https://vod.example/v.m3u8"}),
        encoding="utf-8",
    )


@pytest.fixture
def pipeline(tmp_path: Path, fake_engine):
    library = LocalLibrary(tmp_path / "library")
    work_dir = tmp_path / "work"
    sleeps: List[float] = []
    processors = build_default_processors(
        default_profile(),
        source=library,
        sink=library,
        extractor_factory=lambda: ClipExtractor(engine=fake_engine, work_dir=work_dir),
    )
    orch = JobOrchestrator(store=JobStore(tmp_path / "jobs.sqlite"), processors=processors, sleep=sleeps.append)
    return orch, library, work_dir, sleeps


def _jobs_of(orch: JobOrchestrator, kind: JobKind):
    return [j for j in orch.store.list_jobs() if j.kind == kind]


def test_full_pipeline(pipeline, fake_engine):
    orch, library, work_dir, _ = pipeline
    _make_vod(library.root, "v1", _spike_rows())

    job_id = orch.enqueue(JobKind.ANALYZE_VOD, vod_resource("v1"), {"vod_id": "v1"})
    assert orch.run_pending() == 5

    analysis = orch.get(job_id)
    assert analysis.status == JobStatus.COMPLETED
    assert analysis.result["highlights_found"] == 2
    assert len(analysis.result["extract_jobs"]) == 2

    extracts = _jobs_of(orch, JobKind.EXTRACT_CLIP)
    uploads = _jobs_of(orch, JobKind.UPLOAD_CLIP)
    assert len(extracts) == 2 and len(uploads) == 2
    assert all(j.status == JobStatus.COMPLETED for j in extracts + uploads)
    assert {j.resource_key for j in extracts} == {clip_resource(c) for c in analysis.result["clip_ids"]}

    starts = sorted(j.payload["start_time"] for j in extracts)
    assert starts == [0.0, 120.0]
    assert all(j.payload["video_url"] == "https://vod.example/v.m3u8" for j in extracts)

    stored = sorted(p.name for p in library.clips_dir.iterdir())
    assert len([n for n in stored if n.endswith("_thumb.jpg")]) == 2
    assert len([n for n in stored if n.endswith(".mp4")]) == 2
    for upload in uploads:
        assert Path(upload.result["video_url"]).is_file()
        assert upload.result["thumbnail_url"].endswith("_thumb.jpg")

    # every temp artifact was either handed off and deleted after upload, or cleaned up
    assert list(work_dir.iterdir()) == []

    saved = json.loads((library.vod_dir("v1") / "highlights.json").read_text(encoding="utf-8"))
    assert [h["clip_id"] for h in saved["highlights"]] == analysis.result["clip_ids"]
    assert saved["highlights"][0]["title"].startswith("Highlight 1:")


def test_empty_chat_completes_with_zero_highlights(pipeline, fake_engine):
    orch, library, _, _ = pipeline
    _make_vod(library.root, "quiet", [])

    job_id = orch.enqueue(JobKind.ANALYZE_VOD, vod_resource("quiet"), {"vod_id": "quiet"})
    assert orch.run_pending() == 1

    job = orch.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result["highlights_found"] == 0
    assert _jobs_of(orch, JobKind.EXTRACT_CLIP) == []
    assert fake_engine.calls == []


def test_missing_vod_id_fails_without_retry(pipeline):
    orch, _, _, sleeps = pipeline
    job_id = orch.enqueue(JobKind.ANALYZE_VOD, "vod:?", {})
    job = orch.run_job(job_id)
    assert job.status == JobStatus.FAILED
    assert "vod_id" in job.error
    assert sleeps == []


def test_unknown_vod_is_an_input_error(pipeline):
    orch, _, _, sleeps = pipeline
    job_id = orch.enqueue(JobKind.ANALYZE_VOD, vod_resource("ghost"), {"vod_id": "ghost"})
    job = orch.run_job(job_id)
    assert job.status == JobStatus.FAILED
    assert "No chat log" in job.error
    assert sleeps == []


def test_extraction_engine_failure_is_retried_then_failed(pipeline, fake_engine):
    orch, _, work_dir, sleeps = pipeline
    fake_engine.fail_extract = OSError("Connection reset by peer")

    job_id = orch.enqueue(
        JobKind.EXTRACT_CLIP,
        clip_resource("c1"),
        {"clip_id": "c1", "video_url": "https://vod.example/v.m3u8", "start_time": 0.0, "end_time": 5.0},
    )
    job = orch.run_job(job_id)

    assert job.status == JobStatus.FAILED
    assert job.attempts == 3
    assert "Connection reset" in job.error
    assert sleeps == [2.0, 4.0]
    assert list(work_dir.iterdir()) == []
    assert _jobs_of(orch, JobKind.UPLOAD_CLIP) == []


def test_invalid_range_fails_immediately(pipeline, fake_engine):
    orch, _, _, sleeps = pipeline
    job_id = orch.enqueue(
        JobKind.EXTRACT_CLIP,
        clip_resource("c1"),
        {"clip_id": "c1", "video_url": "in.mp4", "start_time": 10.0, "end_time": 5.0},
    )
    job = orch.run_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 1
    assert "Invalid time range" in job.error
    assert "extract" not in fake_engine.names()


def test_upload_with_missing_file_fails(pipeline, tmp_path):
    orch, _, _, sleeps = pipeline
    job_id = orch.enqueue(
        JobKind.UPLOAD_CLIP,
        "upload:c1",
        {"clip_id": "c1", "local_path": str(tmp_path / "gone.mp4")},
    )
    job = orch.run_job(job_id)
    assert job.status == JobStatus.FAILED
    assert "Clip file missing" in job.error
    assert sleeps == []


def test_missing_engine_is_reported_when_processors_are_built(tmp_path, fake_engine):
    library = LocalLibrary(tmp_path / "library")
    fake_engine.is_available = False

    def factory():
        return ClipExtractor(engine=fake_engine, work_dir=tmp_path / "work")

    processors = build_default_processors(default_profile(), source=library, sink=library, extractor_factory=factory)
    assert fake_engine.calls == []

    with pytest.raises(EngineUnavailableError):
        build_default_processors(
            default_profile(), source=library, sink=library, extractor_factory=factory, check_engine=True
        )
    assert fake_engine.names() == ["available"]
    assert JobKind.EXTRACT_CLIP in processors
