"""Route tests for the export API (api/routes/exports.py).

The ExportService dependency is overridden with one built on the in-memory
fakes, so no PostgreSQL, Redis or Celery broker is needed.
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from fakes import (
    FakeContentCache,
    FakeJobStore,
    FakeLedger,
    FakePersonalizationStore,
    FakeUploads,
)
from site_personalizer.api.main import create_app
from site_personalizer.api.routes.exports import get_export_service
from site_personalizer.pipeline.export_service import ExportService

FILE_ID = uuid.UUID("0f3c1c1e-9f6b-4d8e-8a53-7f0c2f1b6d42")
EMPTY_FILE_ID = uuid.UUID("2b4d6f80-1a3c-4e5f-9b7d-0c2e4a6b8d9f")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def jobs() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(balance=10)


@pytest.fixture
def dispatched() -> list[uuid.UUID]:
    return []


@pytest.fixture
def client(jobs, ledger, dispatched):
    uploads = FakeUploads(
        {
            FILE_ID: [
                {"Name": "Acme", "Website": "acme.com"},
                {"Name": "Bolt", "Website": "bolt.io"},
            ],
            EMPTY_FILE_ID: [],
        }
    )
    service = ExportService(
        jobs,
        uploads,
        FakeContentCache(),
        FakePersonalizationStore(),
        ledger,
        dispatch=dispatched.append,
    )
    app = create_app()
    app.dependency_overrides[get_export_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client


def _payload(**overrides) -> dict:
    body = {"user_id": "user-1", "file_id": str(FILE_ID), "selected_templates": ["intro"]}
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# POST /exports
# ---------------------------------------------------------------------------


class TestCreateExport:
    def test_accepted(self, client, jobs, dispatched) -> None:
        response = client.post("/exports", json=_payload())

        assert response.status_code == 202
        job_id = uuid.UUID(response.json()["job_id"])
        assert dispatched == [job_id]
        assert jobs.jobs[job_id].total_rows == 2
        assert "X-Request-ID" in response.headers

    def test_schema_rejects_empty_templates(self, client) -> None:
        response = client.post("/exports", json=_payload(selected_templates=[]))

        assert response.status_code == 422

    def test_custom_template_without_prompt(self, client) -> None:
        response = client.post("/exports", json=_payload(selected_templates=["custom_haiku"]))

        assert response.status_code == 400
        assert "custom_haiku" in response.json()["detail"]

    def test_empty_upload(self, client) -> None:
        response = client.post("/exports", json=_payload(file_id=str(EMPTY_FILE_ID)))

        assert response.status_code == 400
        assert response.json()["detail"] == "No file data found"

    def test_unknown_upload(self, client) -> None:
        response = client.post("/exports", json=_payload(file_id=str(uuid.uuid4())))

        assert response.status_code == 404

    def test_insufficient_credits(self, client, ledger, dispatched) -> None:
        ledger.balance = 1

        response = client.post("/exports", json=_payload())

        assert response.status_code == 402
        assert response.json()["detail"] == {
            "message": "Insufficient credits",
            "required": 2,
            "available": 1,
        }
        assert dispatched == []


# ---------------------------------------------------------------------------
# GET /exports/{job_id}/status
# ---------------------------------------------------------------------------


class TestExportStatus:
    def test_processing_job(self, client) -> None:
        job_id = client.post("/exports", json=_payload()).json()["job_id"]

        response = client.get(f"/exports/{job_id}/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processing"
        assert body["total_rows"] == 2
        assert body["processed_rows"] == 0
        assert body["progress"] == 0.0
        assert body["row_data"] is None

    async def test_completed_job_includes_rows(self, client, jobs) -> None:
        job_id = uuid.UUID(client.post("/exports", json=_payload()).json()["job_id"])
        rows = [{"Name": "Acme", "summary": "A shop.", "intro": "Hi"}]
        await jobs.complete(job_id, rows, credits_used=1)

        body = client.get(f"/exports/{job_id}/status").json()

        assert body["status"] == "completed"
        assert body["row_data"] == rows
        assert body["credits_used"] == 1

    def test_unknown_job(self, client) -> None:
        job_id = uuid.uuid4()

        response = client.get(f"/exports/{job_id}/status")

        assert response.status_code == 404
        assert response.json()["detail"] == f"Export job '{job_id}' not found."

    def test_malformed_job_id(self, client) -> None:
        response = client.get("/exports/not-a-uuid/status")

        assert response.status_code == 422


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
