"""Tests for the coordinator HTTP service."""

import pytest
from fastapi.testclient import TestClient

import main

TRANSCRIPT = "Name: Jane Doe, Age: 34, BP: 120/80, Chief Complaint: headache"


@pytest.fixture
def client():
    with TestClient(main.app) as test_client:
        yield test_client


def _register(client: TestClient, url: str = "https://transcribe.intron.health/session") -> dict:
    resp = client.post("/api/v1/tabs", json={"url": url, "callback_url": "http://127.0.0.1:9001"})
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    def test_health(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["coordinator_ready"] is True
        assert body["contexts"] == 0


class TestTabs:
    def test_register(self, client: TestClient):
        tab = _register(client)
        assert tab == {
            "id": 1,
            "url": "https://transcribe.intron.health/session",
            "window_id": 1,
            "callback_url": "http://127.0.0.1:9001",
        }

    def test_unregister_unknown(self, client: TestClient):
        resp = client.delete("/api/v1/tabs/99")
        assert resp.status_code == 404

    def test_unregister_clears_state(self, client: TestClient):
        tab = _register(client)
        client.post(
            "/api/v1/messages",
            json={"type": "transcript-detected", "data": TRANSCRIPT, "sender_tab_id": tab["id"]},
        )

        resp = client.delete(f"/api/v1/tabs/{tab['id']}")

        assert resp.status_code == 200
        state = client.post("/api/v1/messages", json={"type": "get-state"}).json()
        assert state == {"source_context_id": None, "destination_context_id": None, "has_transcript": False}


class TestMessages:
    def test_transcript_detected_then_state(self, client: TestClient):
        tab = _register(client)

        resp = client.post(
            "/api/v1/messages",
            json={"type": "transcript-detected", "data": TRANSCRIPT, "sender_tab_id": tab["id"]},
        )
        assert resp.json() == {"success": True}

        state = client.post("/api/v1/messages", json={"type": "get-state"}).json()
        assert state == {"source_context_id": tab["id"], "destination_context_id": None, "has_transcript": True}

        held = client.post("/api/v1/messages", json={"type": "request-transcript"}).json()
        assert held == {"transcript": TRANSCRIPT}

    def test_transcript_ready_without_destination(self, client: TestClient):
        tab = _register(client)

        resp = client.post(
            "/api/v1/messages",
            json={"type": "transcript-ready", "data": TRANSCRIPT, "sender_tab_id": tab["id"]},
        )

        assert resp.json() == {"success": True, "delivered": False}

    def test_unknown_type(self, client: TestClient):
        resp = client.post("/api/v1/messages", json={"type": "reload"})
        assert resp.status_code == 200
        assert resp.json() == {"success": False, "error": "Unknown message type: reload"}

    def test_invalid_body(self, client: TestClient):
        resp = client.post("/api/v1/messages", json={"data": "no type"})
        assert resp.status_code == 422


class TestNotRunning:
    def test_503_before_startup(self):
        client = TestClient(main.app)
        resp = client.post("/api/v1/messages", json={"type": "get-state"})
        assert resp.status_code == 503
