import json
import threading
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from streamclips.jobs import JobKind, JobOrchestrator, JobResult, JobStore
from streamclips.server import create_app


class _OkProcessor:
    def process(self, ctx):
        ctx.progress(30)
        return JobResult.ok(done=True)


@pytest.fixture
def orch(tmp_path: Path) -> JobOrchestrator:
    return JobOrchestrator(
        store=JobStore(tmp_path / "jobs.sqlite"),
        processors={JobKind.ANALYZE_VOD: _OkProcessor()},
        sleep=lambda _s: None,
    )


def _make_client(orch: JobOrchestrator) -> TestClient:
    # Not used as a context manager: no lifespan, so no worker pool and jobs stay PENDING.
    return TestClient(create_app(orch, keepalive_s=0.05))


def _events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_health(orch):
    r = _make_client(orch).get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_create_and_get_job(orch):
    client = _make_client(orch)
    r = client.post("/api/jobs", json={"kind": "analyze_vod", "resource_key": "vod:1", "payload": {"vod_id": "1"}})
    assert r.status_code == 200
    job_id = r.json()["job_id"]
    assert r.json()["job"]["status"] == "PENDING"

    r = client.get(f"/api/jobs/{job_id}")
    assert r.status_code == 200
    assert r.json()["payload"] == {"vod_id": "1"}
    assert r.json()["resource_key"] == "vod:1"

    r = client.get("/api/jobs", params={"status": "pending"})
    assert [j["id"] for j in r.json()["jobs"]] == [job_id]


def test_duplicate_resource_is_409(orch):
    client = _make_client(orch)
    first = client.post("/api/jobs", json={"kind": "analyze_vod", "resource_key": "vod:1"}).json()["job_id"]

    r = client.post("/api/jobs", json={"kind": "analyze_vod", "resource_key": "vod:1"})
    assert r.status_code == 409
    assert r.json()["job_id"] == first

    orch.run_job(first)
    r = client.post("/api/jobs", json={"kind": "analyze_vod", "resource_key": "vod:1"})
    assert r.status_code == 200


@pytest.mark.parametrize(
    "body,detail",
    [
        ({"kind": "transcode_everything", "resource_key": "x"}, "unknown_kind"),
        ({"kind": "analyze_vod"}, "resource_key_required"),
        ({"kind": "analyze_vod", "resource_key": "x", "payload": [1, 2]}, "payload_must_be_object"),
    ],
)
def test_bad_requests_are_400(orch, body, detail):
    r = _make_client(orch).post("/api/jobs", json=body)
    assert r.status_code == 400
    assert r.json()["detail"].startswith(detail)


def test_unknown_job_is_404(orch):
    client = _make_client(orch)
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.get("/api/jobs/nope/events").status_code == 404


def test_events_for_finished_job_is_single_snapshot(orch):
    job_id = orch.enqueue(JobKind.ANALYZE_VOD, "vod:1")
    orch.run_job(job_id)

    r = _make_client(orch).get(f"/api/jobs/{job_id}/events")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _events(r.text)
    assert len(events) == 1
    assert events[0]["type"] == "job_update"
    assert events[0]["job"]["status"] == "COMPLETED"
    assert orch.hub.subscriber_count(job_id) == 0


def test_events_stream_until_terminal(orch):
    job_id = orch.enqueue(JobKind.ANALYZE_VOD, "vod:1")
    runner = threading.Timer(0.2, orch.run_job, args=(job_id,))
    runner.start()
    try:
        r = _make_client(orch).get(f"/api/jobs/{job_id}/events")
    finally:
        runner.join()

    events = _events(r.text)
    statuses = [e["job"]["status"] for e in events]
    assert statuses[0] == "PENDING"
    assert statuses[-1] == "COMPLETED"
    assert ": keep-alive" in r.text


def test_job_list_is_newest_first(orch):
    first = orch.enqueue(JobKind.ANALYZE_VOD, "vod:1")
    second = orch.enqueue(JobKind.ANALYZE_VOD, "vod:2")
    client = _make_client(orch)

    for params in ({}, {"status": "PENDING"}):
        r = client.get("/api/jobs", params=params)
        assert [j["id"] for j in r.json()["jobs"]] == [second, first]
