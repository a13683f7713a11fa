"""Integration tests for the HTTP API."""

import pytest
from conftest import make_entry_data
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client(isolated_env):
    """Test client running the app lifespan against a throwaway data dir.

    No provider keys are set, so premium providers are unconfigured and
    queries that miss the knowledge base fall back.
    """
    with TestClient(app) as test_client:
        yield test_client


def create_entry(client, **overrides):
    response = client.post("/v1/knowledge", json=make_entry_data(**overrides))
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.integration
def test_root_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "FisioFlow AI Engine"
    assert data["endpoints"]["queries"] == "/v1/queries"


@pytest.mark.integration
def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert "cache_sweep" in data["components"]["scheduler"]
    assert "X-Request-ID" in response.headers
    assert "X-Response-Time" in response.headers


@pytest.mark.integration
def test_query_answered_from_knowledge_base(client):
    create_entry(client)

    response = client.post(
        "/v1/queries",
        json={
            "text": "Qual o melhor tratamento para dor lombar crônica?",
            "type": "protocol_suggestion",
            "context": {"userRole": "physio", "symptoms": ["dor lombar"]},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "internal"
    assert data["provider"] is None
    assert "Protocolo para lombalgia crônica" in data["content"]


@pytest.mark.integration
def test_query_falls_back_without_providers(client):
    response = client.post(
        "/v1/queries",
        json={
            "text": "Alongamentos para fascite plantar",
            "type": "exercise-recommendation",
            "context": {"user_role": "physio"},
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["confidence"] == pytest.approx(0.3)
    assert data["metadata"]["fallback"] is True


@pytest.mark.integration
@pytest.mark.parametrize(
    "payload, param",
    [
        ({"text": "Dor no joelho", "type": "horoscope", "context": {"user_role": "physio"}}, "type"),
        ({"text": "Dor no joelho", "context": {}}, "context.user_role"),
        ({"type": "general_question", "context": {"user_role": "physio"}}, "text"),
        (
            {"text": "Dor no joelho", "priority": "asap", "context": {"user_role": "physio"}},
            "priority",
        ),
    ],
)
def test_query_validation_errors(client, payload, param):
    response = client.post("/v1/queries", json=payload)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert error["code"] == "validation_error"
    assert error["param"] == param


@pytest.mark.integration
def test_knowledge_crud(client):
    entry_id = create_entry(client)

    listed = client.get("/v1/knowledge", params={"tenant_id": "clinic-1"}).json()
    assert listed["total"] == 1

    entry = client.get(f"/v1/knowledge/{entry_id}").json()
    assert entry["confidence"] == pytest.approx(0.9)

    updated = client.patch(
        f"/v1/knowledge/{entry_id}", json={"title": "Protocolo atualizado para lombalgia"}
    )
    assert updated.status_code == 200
    assert updated.json()["title"] == "Protocolo atualizado para lombalgia"

    assert client.delete(f"/v1/knowledge/{entry_id}").json() == {"id": entry_id, "deleted": True}
    missing = client.get(f"/v1/knowledge/{entry_id}")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


@pytest.mark.integration
def test_knowledge_create_rejects_invalid_type(client):
    response = client.post("/v1/knowledge", json=make_entry_data(type="recipe"))

    assert response.status_code == 400
    assert response.json()["error"]["param"] == "type"


@pytest.mark.integration
def test_knowledge_search_statistics_and_feedback(client):
    entry_id = create_entry(client)

    search = client.post("/v1/knowledge/search", json={"text": "lombar", "tenant_id": "clinic-1"})
    assert search.json()["total"] == 1
    assert search.json()["data"][0]["entry"]["id"] == entry_id

    feedback = client.post(f"/v1/knowledge/{entry_id}/feedback", json={"positive": True})
    assert feedback.json()["confidence"] == pytest.approx(0.95)

    stats = client.get("/v1/knowledge/statistics").json()
    assert stats["total_entries"] == 1
    assert stats["by_type"] == {"protocol": 1}

    assert client.post("/v1/knowledge/missing/feedback", json={"positive": True}).status_code == 404


@pytest.mark.integration
def test_analytics_endpoints(client):
    query = client.post(
        "/v1/queries",
        json={"text": "Alongamentos para fascite plantar", "context": {"user_role": "physio"}},
    ).json()

    feedback = client.post(
        "/v1/analytics/feedback", json={"query_id": query["query_id"], "rating": 4}
    )
    assert feedback.status_code == 200

    analytics = client.get("/v1/analytics").json()
    assert analytics["queries"]["total"] == 1
    assert analytics["quality"]["feedback_count"] == 1

    report = client.get("/v1/analytics/report", params={"period": "7d"}).json()
    assert len(report["trends"]) == 7

    economy = client.get("/v1/analytics/economy").json()
    assert economy["current"]["premium_queries"] == 0

    assert client.get("/v1/analytics/report", params={"period": "1y"}).status_code == 400
    unknown = client.post("/v1/analytics/feedback", json={"query_id": "missing", "rating": 4})
    assert unknown.status_code == 404
    bad_rating = client.post(
        "/v1/analytics/feedback", json={"query_id": query["query_id"], "rating": 9}
    )
    assert bad_rating.status_code == 400


@pytest.mark.integration
def test_operations_endpoints(client):
    providers = client.get("/v1/providers").json()
    assert set(providers) == {
        "chatgpt_plus",
        "gemini_pro",
        "claude_pro",
        "perplexity_pro",
        "mars_ai_pro",
    }
    assert providers["chatgpt_plus"]["configured"] is False

    tested = client.post("/v1/providers/test").json()
    assert not any(tested.values())

    assert client.delete("/v1/cache").json() == {"cleared": True}
    assert client.get("/v1/alerts").json() == {"data": [], "total": 0}
    assert client.post("/v1/alerts/missing/resolve").status_code == 404
