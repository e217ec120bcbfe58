"""
API integration tests for the FastAPI backend.

Tests the root endpoints and the sessions router using FastAPI TestClient,
with the model provider replaced by a scripted one.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from taleweaver.api.sessions import sessions_db
from taleweaver.main import app

# One reply that satisfies every collaborator: the classifier reads
# intentType, the narrator its full contract, the others their defaults.
UNIVERSAL_REPLY = {
    "intentType": "narrative",
    "requiredKeys": ["location_details"],
    "location_update": {"site_name": "The Rusty Anchor", "zone": "Harbor Town"},
    "npc_resolution": [],
    "narration": "Rain drums on the tavern roof.",
    "turnSummary": "Aria listens to the rain.",
    "adventure_brief": "Find the smuggler.",
    "active_engagement": False,
    "alignmentOptions": [],
    "updates": {},
}

CREATE_PAYLOAD = {
    "player": {"name": "Aria", "skill_bonuses": {"Stealth": 3}},
    "companions": [{"id": "comp-bram", "name": "Bram"}],
    "world_summary": "A seafaring kingdom.",
    "starting_zone": {"coordinates": "0-0", "name": "Harbor Town", "sites": ["The Rusty Anchor"]},
    "starting_site": "The Rusty Anchor",
    "current_time": "March 3, 1024, 09:15",
}


@pytest.fixture
def client(scripted_provider):
    sessions_db.clear()
    with patch(
        "taleweaver.api.sessions.create_provider",
        side_effect=lambda: scripted_provider(default=UNIVERSAL_REPLY),
    ), patch("taleweaver.api.sessions.create_embedding_provider", return_value=None):
        with TestClient(app) as test_client:
            yield test_client
    sessions_db.clear()


def create_session(client) -> str:
    response = client.post("/sessions/", json=CREATE_PAYLOAD)
    assert response.status_code == 200
    return response.json()["id"]


class TestRootEndpoints:
    """Test basic root endpoints"""

    def test_root_endpoint(self, client):
        """Test the root endpoint returns correct response"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Taleweaver"
        assert "version" in data
        assert data["status"] == "running"

    def test_health_endpoint(self, client):
        """Test the health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "sessions": 0}


class TestSessionsAPI:
    """Test session lifecycle endpoints"""

    def test_create_and_get_session(self, client):
        session_id = create_session(client)

        response = client.get(f"/sessions/{session_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["state"]["player"]["name"] == "Aria"
        assert data["state"]["current_locale"] == "Harbor Town"
        assert data["state"]["zones"]["0-0"]["visited"] is True
        assert data["status"]["is_generating"] is False
        assert "messages" not in data["state"]

    def test_list_sessions(self, client):
        session_id = create_session(client)
        response = client.get("/sessions/")
        assert [s["id"] for s in response.json()["sessions"]] == [session_id]

    def test_get_session_not_found(self, client):
        """Test getting a non-existent session"""
        response = client.get("/sessions/non-existent-id")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"].lower()

    def test_turn_on_missing_session(self, client):
        response = client.post("/sessions/missing/turns", json={"action": "Hello"})
        assert response.status_code == 404

    def test_process_turn(self, client):
        session_id = create_session(client)

        response = client.post(f"/sessions/{session_id}/turns", json={"action": "I listen to the rain"})

        assert response.status_code == 200
        data = response.json()
        assert data["narration"] == "Rain drums on the tavern roof."
        assert data["intent"] == "narrative"
        assert data["narrator_unavailable"] is False

        messages = client.get(f"/sessions/{session_id}/messages").json()["messages"]
        assert [m["sender"] for m in messages[:2]] == ["user", "model"]
        assert messages[1]["id"] == data["message_id"]

    def test_empty_action_rejected(self, client):
        session_id = create_session(client)
        response = client.post(f"/sessions/{session_id}/turns", json={"action": ""})
        assert response.status_code == 422

    def test_turn_while_busy_conflicts(self, client):
        session_id = create_session(client)
        sessions_db[session_id].is_generating = True

        response = client.post(f"/sessions/{session_id}/turns", json={"action": "Hello"})

        assert response.status_code == 409

    def test_export_then_import(self, client):
        session_id = create_session(client)
        exported = client.get(f"/sessions/{session_id}/export")
        assert exported.status_code == 200
        state = exported.json()
        assert state["session_id"] == session_id

        assert client.delete(f"/sessions/{session_id}").json()["status"] == "deleted"
        assert client.get(f"/sessions/{session_id}").status_code == 404

        response = client.post("/sessions/import", json=state)
        assert response.status_code == 200
        assert response.json()["id"] == session_id
        restored = client.get(f"/sessions/{session_id}").json()["state"]
        assert restored["player"]["name"] == "Aria"

    def test_import_invalid_state(self, client):
        response = client.post("/sessions/import", json={"player": "not a character"})
        assert response.status_code == 422

    def test_import_over_live_session_conflicts(self, client):
        session_id = create_session(client)
        live = sessions_db[session_id]
        state = client.get(f"/sessions/{session_id}/export").json()

        response = client.post("/sessions/import", json=state)

        assert response.status_code == 409
        assert sessions_db[session_id] is live


class TestUpkeepAPI:
    """Test automated events, story compression and objective follow-ups"""

    def test_automated_event(self, client):
        session_id = create_session(client)

        response = client.post(
            f"/sessions/{session_id}/events",
            json={"action": "We rest until dawn", "system_instruction": "Describe a quiet night."},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["narration"] == "Rain drums on the tavern roof."
        assert data["intent"] == "narrative"

    def test_compress_empty_story(self, client):
        session_id = create_session(client)
        response = client.post(f"/sessions/{session_id}/story/compress", json={})
        assert response.status_code == 200
        assert response.json()["compressed"] is False

    def test_follow_up_unknown_objective(self, client):
        session_id = create_session(client)
        response = client.post(f"/sessions/{session_id}/objectives/obj-missing/follow-up")
        assert response.status_code == 404
