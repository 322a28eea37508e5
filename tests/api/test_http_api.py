from __future__ import annotations

import sqlite3
import time

import pytest
from fastapi.testclient import TestClient

from harvester.api import create_app
from fakes import FakeAdapter, MemoryExporter


@pytest.fixture
def client(make_orchestrator, event_log):
    orchestrator = make_orchestrator(FakeAdapter(total_pages=2), [MemoryExporter()])
    with TestClient(create_app(orchestrator, events=event_log)) as test_client:
        yield test_client


def _wait_for_terminal(client: TestClient, job_id: str) -> dict:
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        data = client.get(f"/jobs/{job_id}").json()["data"]
        if data["status"] in {"completed", "failed"}:
            return data
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_scrape_creates_a_job_that_completes(client: TestClient) -> None:
    response = client.post(
        "/scrape",
        json={"url": "https://example.com/list", "websiteCode": "fake", "exporters": ["memory"]},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "pending"

    job = _wait_for_terminal(client, body["data"]["job_id"])
    assert job["status"] == "completed"
    assert job["processed_pages"] == 2
    assert job["items_found"] == 4
    assert job["is_currently_running"] is False

    listing = client.get("/jobs", params={"status": "completed", "source": "fake"}).json()["data"]
    assert [item["id"] for item in listing["jobs"]] == [job["id"]]
    assert listing["pagination"] == {"limit": 50, "offset": 0, "count": 1}

    logs = client.get("/logs", params={"job_id": job["id"]}).json()["data"]
    assert {entry["message"] for entry in logs} == {"Job started", "Job completed"}

    stats = client.get("/stats").json()["data"]
    assert stats["jobs"]["completed"] == 1

    conflict = client.post(f"/jobs/{job['id']}/cancel")
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "Conflict"


@pytest.mark.parametrize(
    "payload",
    [
        {"url": "https://example.com/list", "source": "nope", "exporters": ["memory"]},
        {"url": "https://example.com/list", "source": "fake", "exporters": ["ftp"]},
        {"url": "example.com", "source": "fake", "exporters": ["memory"]},
        {"url": "https://example.com/list", "source": "fake", "exporters": []},
    ],
)
def test_scrape_rejects_bad_requests(client: TestClient, payload: dict) -> None:
    response = client.post("/scrape", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body == {"success": False, "error": "Validation error", "message": body["message"]}
    assert body["message"]


def test_malformed_body_is_a_validation_error(client: TestClient) -> None:
    response = client.post("/scrape", content="not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_job_returns_404(client: TestClient) -> None:
    assert client.get("/jobs/missing").status_code == 404
    response = client.post("/jobs/missing/cancel")
    assert response.status_code == 404
    assert response.json()["error"] == "Not found"


def test_list_jobs_validates_query(client: TestClient) -> None:
    assert client.get("/jobs", params={"limit": 0}).status_code == 400
    assert client.get("/jobs", params={"status": "bogus"}).status_code == 400


def test_health(client: TestClient) -> None:
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["uptime"] >= 0
    assert "timestamp" in body


def test_shutdown_releases_exporters_and_connections(make_orchestrator, event_log, job_store, storage) -> None:
    memory = MemoryExporter()
    orchestrator = make_orchestrator(FakeAdapter(), [memory])
    api = create_app(orchestrator, events=event_log, exporters=orchestrator.exporters, storage=storage)

    with TestClient(api) as test_client:
        assert test_client.get("/health").status_code == 200
        assert not memory.closed

    assert memory.closed
    with pytest.raises(sqlite3.ProgrammingError):
        job_store.conn.execute("SELECT 1")
