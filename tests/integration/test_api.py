import time

import pytest
from fastapi.testclient import TestClient
from qdrant_client import AsyncQdrantClient

from app.container import build_container
from app.main import create_app

PDF_BYTES = b"%PDF-1.4\n% not a real document body\n"


@pytest.fixture
def client(settings, provider):
    container = build_container(
        settings,
        database_url="sqlite://",
        http_client=provider.client(),
        qdrant=AsyncQdrantClient(":memory:"),
    )
    with TestClient(create_app(container)) as test_client:
        yield test_client


def _upload(client, cv=PDF_BYTES, report=PDF_BYTES):
    return client.post("/upload", files={
        "cv": ("cv.pdf", cv, "application/pdf"),
        "project_report": ("report.pdf", report, "application/pdf"),
    })


def _wait_for_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/result/{job_id}").json()
        if body["status"] in ("completed", "failed") or time.monotonic() > deadline:
            return body
        time.sleep(0.05)


def test_upload_returns_document_ids(client):
    response = _upload(client)

    assert response.status_code == 201
    body = response.json()
    assert body["cv_id"].startswith("cv_")
    assert body["project_report_id"].startswith("project_report_")


def test_upload_rejects_non_pdf(client):
    response = _upload(client, cv=b"just some text")

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_upload_requires_both_files(client):
    response = client.post("/upload", files={"cv": ("cv.pdf", PDF_BYTES, "application/pdf")})
    assert response.status_code == 422


def test_evaluate_unknown_documents_is_404(client):
    response = client.post("/evaluate", json={
        "job_title": "Backend Engineer", "cv_id": "cv_missing", "project_report_id": "project_report_missing",
    })
    assert response.status_code == 404


def test_evaluate_rejects_swapped_document_types(client):
    ids = _upload(client).json()
    response = client.post("/evaluate", json={
        "job_title": "Backend Engineer", "cv_id": ids["project_report_id"], "project_report_id": ids["cv_id"],
    })
    assert response.status_code == 404


def test_unknown_job_is_404(client):
    assert client.get("/result/job_missing").status_code == 404


def test_evaluate_queues_job_and_reports_failure_view(client):
    ids = _upload(client).json()
    response = client.post("/evaluate", json={"job_title": "Backend Engineer", **ids})

    assert response.status_code == 202
    queued = response.json()
    assert queued["status"] == "queued"
    assert queued["created_at"]

    # the uploaded bytes are only a PDF header, so extraction fails the job
    body = _wait_for_terminal(client, queued["id"])
    assert body["status"] == "failed"
    assert body["result"] is None
    assert body["retry_possible"] is True
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["stage"] == "cv_parsing"
    assert body["input"]["job_title"] == "Backend Engineer"
    assert body["processing_time_seconds"] is None


def test_vector_db_health_lists_collections(client):
    response = client.get("/vector-db/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "collections": [], "collection_count": 0}
