"""
Tests for the HTTP API.

Uses FastAPI's TestClient against the in-memory services installed by the
services fixture.
"""

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from formdesk import __version__
from tests.factories import FORM_KEY, sample_values

RECORDS = f"/api/forms/{FORM_KEY}/records"


@pytest.fixture
def client(services):
    return TestClient(create_app())


def create(client, **overrides):
    response = client.post(RECORDS, json={"language": "EN", "values": sample_values(**overrides)})
    assert response.status_code == 200, response.text
    return response.json()["record_id"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": __version__, "forms": ["orders"]}

    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-test-1"})
        assert response.headers["x-request-id"] == "req-test-1"

    def test_request_id_generated(self, client):
        response = client.get("/api/health")
        assert response.headers["x-request-id"].startswith("req-")


class TestRecords:
    """Record endpoints."""

    def test_create_and_get(self, client):
        record_id = create(client)

        response = client.get(f"{RECORDS}/{record_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["values"]["NAME"] == "Ann Smith"
        assert body["values"]["ORDER_NO"] == "ORD-0001"
        assert body["language"] == "EN"

    def test_update(self, client):
        record_id = create(client)
        response = client.post(RECORDS, json={"id": record_id, "values": sample_values(EMAIL="new@example.com")})

        assert response.status_code == 200
        assert response.json()["record_id"] == record_id
        assert client.get(f"{RECORDS}/{record_id}").json()["values"]["EMAIL"] == "new@example.com"

    def test_dedup_conflict(self, client):
        first = create(client)

        response = client.post(RECORDS, json={"language": "FR", "values": sample_values(NAME="ANN SMITH")})

        assert response.status_code == 409
        assert response.json()["detail"] == {
            "message": "Cette commande existe déjà.",
            "rule_id": "unique-order",
            "existing_record_id": first,
        }

    def test_list_pages(self, client):
        ids = [create(client, NAME=f"Customer {i}") for i in range(3)]

        first = client.get(RECORDS, params={"page_size": 2, "fields": "NAME"}).json()
        assert [item["id"] for item in first["items"]] == ids[:2]
        assert first["total_count"] == 3
        assert first["items"][0]["NAME"] == "Customer 0"
        assert "EMAIL" not in first["items"][0]

        second = client.get(RECORDS, params={"page_size": 2, "page_token": first["next_page_token"]}).json()
        assert [item["id"] for item in second["items"]] == ids[2:]
        assert second["next_page_token"] is None

    def test_unknown_record(self, client):
        response = client.get(f"{RECORDS}/missing")
        assert response.status_code == 404

    def test_unknown_form(self, client):
        response = client.get("/api/forms/nope/records")
        assert response.status_code == 404
        assert response.json()["detail"] == "form not found: nope"


class TestFollowup:
    """Follow-up endpoint."""

    def test_create_pdf(self, client, renderer):
        record_id = create(client)

        response = client.post(f"{RECORDS}/{record_id}/followup/create_pdf")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "PDF ready"
        assert body["file_id"] in renderer.files

    def test_failure_is_reported_in_body(self, client):
        record_id = create(client)

        response = client.post(f"{RECORDS}/{record_id}/followup/ARCHIVE")

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["message"] == "Unknown follow-up action."

    def test_unknown_form(self, client):
        response = client.post("/api/forms/nope/records/r1/followup/CREATE_PDF")
        assert response.status_code == 404


class TestCache:
    """Cache control."""

    def test_invalidate(self, client, services):
        before = services.store.cache.version()

        response = client.post("/api/cache/invalidate", json={"reason": "test"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["version"] != before
        assert services.store.cache.version() == response.json()["version"]

    def test_invalidate_without_body(self, client):
        response = client.post("/api/cache/invalidate")
        assert response.status_code == 200
        assert response.json()["version"]
