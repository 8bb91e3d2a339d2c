"""Tests for the HTTP endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from workstream_engine.api import create_app
from workstream_engine.config import Settings
from workstream_engine.schemas import Workstream
from workstream_engine.store import WorkstreamStore
from workstream_engine.streaming import decode_sse

from conftest import TopicEmbeddingClient, add_achievement, add_topic_groups

TOKEN = "token-user-1"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def db_path(tmp_path, store):
    store.add_api_token("user-1", TOKEN)
    return store.path


@pytest.fixture
def client(db_path) -> TestClient:
    settings = Settings(
        openai_api_key="",
        embedding_model="test-model",
        embedding_dimensions=8,
        workstream_naming_enabled=False,
        database_path=db_path,
    )
    app = create_app(
        settings,
        store_factory=lambda: WorkstreamStore(path=db_path),
        embedding_client=TopicEmbeddingClient(),
    )
    return TestClient(app)


class TestAuthentication:
    def test_missing_header_is_401(self, client):
        response = client.post("/workstreams/generate")
        assert response.status_code == 401

    def test_unknown_token_is_401(self, client):
        response = client.post("/workstreams/generate", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_non_bearer_scheme_is_401(self, client):
        response = client.post("/workstreams/generate", headers={"Authorization": f"Basic {TOKEN}"})
        assert response.status_code == 401


class TestValidation:
    def test_range_over_limit_is_400_and_not_charged(self, client, store):
        response = client.post(
            "/workstreams/generate",
            headers=AUTH,
            json={"filters": {"timeRange": {"startDate": "2022-01-01", "endDate": "2024-02-01"}}},
        )
        assert response.status_code == 400
        assert "24 months" in response.json()["detail"]
        assert store.get_user("user-1")["credits"] == 5

    def test_unowned_project_is_400(self, client, store):
        response = client.post(
            "/workstreams/generate",
            headers=AUTH,
            json={"filters": {"projectIds": ["proj-1", "someone-elses"]}},
        )
        assert response.status_code == 400
        assert "someone-elses" in response.json()["detail"]

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/workstreams/generate",
            headers={**AUTH, "Content-Type": "application/json"},
            content=b"{not json",
        )
        assert response.status_code == 400


def test_out_of_credits_is_402(client, store):
    store.create_user("user-1", level="free", credits=0)
    response = client.post("/workstreams/generate", headers=AUTH)
    assert response.status_code == 402
    assert response.json() == {"error": "Insufficient credits", "required": 1, "available": 0}


def test_generate_streams_progress_then_complete(client, store):
    add_topic_groups(store, embedded=False)

    response = client.post("/workstreams/generate", headers=AUTH, json={"filters": {"projectIds": ["proj-1"]}})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    events = decode_sse(response.text)
    assert [event["type"] for event in events[:-1]] == ["progress"] * (len(events) - 1)
    assert events[-1]["type"] == "complete"
    assert events[-1]["result"]["strategy"] == "full"
    assert events[-1]["result"]["workstreams_created"] == 3
    assert store.get_user("user-1")["credits"] == 4


def test_too_few_achievements_stream_an_error(client, store):
    response = client.post("/workstreams/generate", headers=AUTH)

    assert response.status_code == 200
    events = decode_sse(response.text)
    assert events[-1]["type"] == "error"
    assert events[-1]["details"] == {"count": 0, "threshold": 20}


def test_auto_assign_without_workstreams_streams_an_error(client, store):
    add_topic_groups(store, embedded=False)
    response = client.post("/workstreams/auto-assign", headers=AUTH)
    events = decode_sse(response.text)
    assert events[-1]["type"] == "error"


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


class TestManualAssignment:
    def test_pins_achievement(self, client, store):
        store.create_workstream(Workstream(id="ws-1", user_id="user-1", name="Mine"))
        add_achievement(store, "a1", "alpha")

        response = client.put("/achievements/a1/workstream", headers=AUTH, json={"workstreamId": "ws-1"})

        assert response.status_code == 200
        assert response.json() == {
            "achievementId": "a1",
            "workstreamId": "ws-1",
            "previousWorkstreamId": None,
            "archivedWorkstreamIds": [],
        }
        assert store.get_achievement("a1").workstream_source == "user"

    def test_unknown_workstream_is_404(self, client, store):
        add_achievement(store, "a1", "alpha")
        response = client.put("/achievements/a1/workstream", headers=AUTH, json={"workstreamId": "nope"})
        assert response.status_code == 404

    def test_missing_key_is_400(self, client, store):
        add_achievement(store, "a1", "alpha")
        response = client.put("/achievements/a1/workstream", headers=AUTH, json={})
        assert response.status_code == 400

    def test_requires_auth(self, client):
        response = client.put("/achievements/a1/workstream", json={"workstreamId": None})
        assert response.status_code == 401
