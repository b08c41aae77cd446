"""
Tests for the HTTP layer: routing, identity, and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from teachback.api.app import create_app
from teachback.shared.exceptions import EvaluationError
from teachback.services.dialogue import SocraticReply

from conftest import SOURCE_TEXT, make_evaluation

USER = {"X-User-Id": "u1"}
OTHER = {"X-User-Id": "u2"}


@pytest.fixture
def client(engine):
    """Test client over an app wired to the mocked engine (runs lifespan)."""
    with TestClient(create_app(engine=engine)) as tc:
        yield tc


def _create(client, **overrides):
    body = {"source_text": SOURCE_TEXT, "title": "Leaves", **overrides}
    response = client.post("/api/loops", json=body, headers=USER)
    assert response.status_code == 201
    return response.json()


def _attempt(client, loop_id, **overrides):
    body = {"transcript": "Plants turn light into sugar", **overrides}
    return client.post(f"/api/loops/{loop_id}/attempts", json=body, headers=USER)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store_connected"] is True
    assert data["schema_version"] == 1


def test_missing_identity_is_rejected(client):
    response = client.get("/api/loops")
    assert response.status_code == 401


def test_create_and_fetch_loop(client):
    loop = _create(client, precision="precise")
    assert loop["current_phase"] == "first_attempt"
    assert loop["precision"] == "precise"
    assert len(loop["key_concepts"]) == 3

    detail = client.get(f"/api/loops/{loop['id']}", headers=USER)
    assert detail.status_code == 200
    assert detail.json()["loop"]["id"] == loop["id"]
    assert detail.json()["attempts"] == []

    listed = client.get("/api/loops", headers=USER).json()
    assert [l["id"] for l in listed] == [loop["id"]]


def test_request_validation(client):
    assert client.post("/api/loops", json={"source_text": ""}, headers=USER).status_code == 422
    assert client.post("/api/loops", json={"source_text": "x", "precision": "vague"}, headers=USER).status_code == 422


def test_ownership_and_missing_loops(client):
    loop = _create(client)
    assert client.get(f"/api/loops/{loop['id']}", headers=OTHER).status_code == 403
    assert client.get("/api/loops/does-not-exist", headers=USER).status_code == 404


def test_due_reviews_route_is_not_a_loop_id(client):
    response = client.get("/api/loops/reviews/due", headers=USER)
    assert response.status_code == 200
    assert response.json() == []


def test_submit_attempt(client):
    loop = _create(client)
    response = _attempt(client, loop["id"], duration_seconds=40, persona="hype")

    assert response.status_code == 201
    data = response.json()
    assert data["next_phase"] == "first_results"
    assert data["attempt"]["score"] == 80
    assert data["attempt"]["persona"] == "hype"
    assert data["evaluation"]["missed_points"] == ["Stomata"]


def test_quota_exhaustion_maps_to_429(client):
    loop = _create(client)
    for _ in range(5):
        assert _attempt(client, loop["id"]).status_code == 201

    response = _attempt(client, loop["id"])
    assert response.status_code == 429
    data = response.json()
    assert data["remaining"] == 0
    assert data["limit"] == 5
    assert data["reset_at"] is not None


def test_evaluation_failure_maps_to_502(client, mock_evaluator):
    loop = _create(client)
    mock_evaluator.evaluate_with_concepts.side_effect = EvaluationError("provider down")

    response = _attempt(client, loop["id"])
    assert response.status_code == 502
    assert "provider down" in response.json()["detail"]


def test_backward_phase_maps_to_409(client):
    loop = _create(client)
    forward = client.post(f"/api/loops/{loop['id']}/phase", json={"phase": "learning"}, headers=USER)
    assert forward.status_code == 200
    assert forward.json()["current_phase"] == "learning"

    backward = client.post(f"/api/loops/{loop['id']}/phase", json={"phase": "first_attempt"}, headers=USER)
    assert backward.status_code == 409


def test_socratic_session_over_http(client, mock_dialogue):
    loop = _create(client)
    _attempt(client, loop["id"])

    started = client.post(f"/api/loops/{loop['id']}/socratic", headers=USER)
    assert started.status_code == 201
    session_id = started.json()["session"]["id"]
    assert started.json()["session"]["target_concepts"] == ["Stomata"]

    mock_dialogue.generate_response.return_value = SocraticReply(message="Yes!", addressed_concept="Stomata")
    turn = client.post(
        f"/api/loops/{loop['id']}/socratic/{session_id}/message",
        json={"content": "Pores on the leaf"},
        headers=USER,
    )
    assert turn.status_code == 200
    assert turn.json()["all_addressed"] is True

    again = client.post(
        f"/api/loops/{loop['id']}/socratic/{session_id}/message",
        json={"content": "More"},
        headers=USER,
    )
    assert again.status_code == 409

    detail = client.get(f"/api/loops/{loop['id']}", headers=USER).json()
    assert detail["loop"]["current_phase"] == "second_attempt"


def test_prior_knowledge_routes(client):
    loop = _create(client, chapter_number=1, chunk_number=1)
    assert loop["current_phase"] == "prior_knowledge"

    response = client.post(
        f"/api/loops/{loop['id']}/prior-knowledge",
        json={"transcript": "Plants need sunlight", "duration_seconds": 15},
        headers=USER,
    )
    assert response.status_code == 200
    assert response.json()["analysis"]["confidence_score"] == 35
    assert response.json()["next_phase"] == "first_attempt"

    skipped = client.post(f"/api/loops/{loop['id']}/skip-prior-knowledge", headers=USER)
    assert skipped.status_code == 409


def test_knowledge_routes_after_completion(client, mock_evaluator):
    loop = _create(client)
    mock_evaluator.evaluate_with_concepts.return_value = make_evaluation(
        ["Photosynthesis", "Chlorophyll", "Stomata"], []
    )
    _attempt(client, loop["id"])
    complete = client.post(f"/api/loops/{loop['id']}/phase", json={"phase": "complete"}, headers=USER)
    assert complete.json()["status"] == "mastered"

    graph = client.get("/api/knowledge/graph", headers=USER).json()
    assert len(graph["nodes"]) == 3
    assert len(graph["edges"]) == 2
    assert all(edge["strength"] == 2.0 for edge in graph["edges"])

    concepts = client.get("/api/knowledge/concepts", headers=USER).json()
    concept_id = concepts[0]["concept"]["id"]
    detail = client.get(f"/api/knowledge/concepts/{concept_id}", headers=USER)
    assert detail.status_code == 200

    assert client.get("/api/knowledge/concepts/missing", headers=USER).status_code == 404
    assert client.get("/api/knowledge/stats", headers=USER).json()["total_concepts"] == 3
    insights = client.get("/api/knowledge/insights", headers=USER).json()
    assert insights["stats"]["total_concepts"] == 3

    # Another user sees nothing
    assert client.get("/api/knowledge/graph", headers=OTHER).json()["nodes"] == []
