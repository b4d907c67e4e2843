"""
API Route Tests

Exercises the transactions router through FastAPI's TestClient with the
pipeline dependency pointed at an in-memory store.
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from api.dependencies import get_pipeline
from api.main import app

BASE = "/api/profiles/p1/transactions"


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def uploaded(client, bank_csv):
    response = client.post(f"{BASE}/upload", files={"file": ("bank.csv", bank_csv, "text/csv")})
    assert response.status_code == 200
    return response.json()


class TestMeta:
    """Tests for service endpoints."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_api_info(self, client):
        assert "upload" in client.get("/api").json()["endpoints"]


class TestUploadRoutes:
    """Tests for upload endpoints."""

    def test_upload(self, uploaded):
        assert len(uploaded["accepted"]) == 3
        assert uploaded["total"] == 3
        assert uploaded["parsed"] == 3
        assert uploaded["skippedReasons"] == {}
        assert uploaded["ambiguousCount"] == 0
        assert uploaded["skippedFiles"] == []
        assert {"originalText", "needsReview", "sourceFile"} <= set(uploaded["accepted"][0])

    def test_upload_rejects_extension(self, client):
        response = client.post(f"{BASE}/upload", files={"file": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 400

    def test_upload_unreadable_file(self, client):
        response = client.post(
            f"{BASE}/upload",
            files={"file": ("broken.xlsx", b"not a workbook", "application/octet-stream")},
        )

        assert response.status_code == 400
        assert "Cannot read workbook" in response.json()["detail"]

    def test_upload_multiple(self, client, bank_csv):
        response = client.post(
            f"{BASE}/upload-multiple",
            files=[
                ("files", ("bank.csv", bank_csv, "text/csv")),
                ("files", ("notes.txt", b"hello", "text/plain")),
                ("files", ("broken.xlsx", b"not a workbook", "application/octet-stream")),
            ],
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data["accepted"]) == 3
        assert [f["fileName"] for f in data["skippedFiles"]] == ["notes.txt", "broken.xlsx"]


class TestTransactionRoutes:
    """Tests for listing and editing transactions."""

    def test_list(self, client, uploaded):
        data = client.get(BASE).json()

        assert data["total"] == 3
        assert data["needs_review_count"] == 1

    def test_list_filters(self, client, uploaded):
        assert client.get(BASE, params={"category": "급여"}).json()["total"] == 1
        assert client.get(BASE, params={"needs_review": True}).json()["total"] == 1
        assert client.get(BASE, params={"start_date": "2024-01-11"}).json()["total"] == 2

    def test_confirm(self, client, uploaded):
        txn = next(t for t in uploaded["accepted"] if t["originalText"] == "알수없는상점")

        response = client.put(BASE, json={"id": txn["id"], "category": "생활", "confirm": True})

        assert response.status_code == 200
        assert response.json()["transactions"][0]["userConfirmed"] is True
        assert client.get(f"{BASE}/mappings").json()["mappings"] == {"알수없는상점": "생활"}

    def test_update_missing(self, client):
        response = client.put(BASE, json={"id": "missing", "category": "식비"})

        assert response.status_code == 404

    def test_delete_one(self, client, uploaded):
        txn_id = uploaded["accepted"][0]["id"]

        assert client.delete(f"{BASE}/{txn_id}").status_code == 200
        assert client.delete(f"{BASE}/{txn_id}").status_code == 404

    def test_delete_all(self, client, uploaded):
        assert client.delete(BASE).json() == {"deleted": 3}

    def test_reclassify(self, client, uploaded):
        client.post(f"{BASE}/keyword-mappings", json={"keyword": "알수없는", "category": "생활"})

        response = client.post(f"{BASE}/reclassify", json={"scope": "needs_review"})

        assert response.json() == {"scope": "needs_review", "total": 1, "updated": 1}

    def test_sources(self, client, uploaded):
        data = client.get(f"{BASE}/sources").json()

        assert data["total"] == 1
        assert data["sources"][0]["sourceFile"] == "bank.csv"
        assert data["sources"][0]["count"] == 3

    def test_analyze(self, client, uploaded):
        data = client.get(f"{BASE}/analyze").json()

        assert set(data) == {"patterns", "summary", "insights", "transactionCount"}


class TestMappingRoutes:
    """Tests for mapping management endpoints."""

    def test_keyword_mappings(self, client):
        created = client.post(f"{BASE}/keyword-mappings", json={"keyword": "Netflix", "category": "구독"})

        assert created.json() == {"keyword": "netflix", "category": "구독"}
        assert client.get(f"{BASE}/keyword-mappings").json()["mappings"] == {"netflix": "구독"}
        assert client.delete(f"{BASE}/keyword-mappings", params={"keyword": "netflix"}).status_code == 200
        assert client.delete(f"{BASE}/keyword-mappings", params={"keyword": "netflix"}).status_code == 404

    def test_empty_keyword(self, client):
        response = client.post(f"{BASE}/keyword-mappings", json={"keyword": "  ", "category": "구독"})

        assert response.status_code == 400

    def test_clear_personal_mappings(self, client):
        assert client.delete(f"{BASE}/mappings").json() == {"deleted": 0}
