"""Tests for error handling in the Storefront API.

Visitor-facing endpoints degrade instead of failing when collaborators
break; back-office endpoints report structured errors.
"""

from fastapi.testclient import TestClient

from storefront.api.dependencies import get_engine
from storefront.api.main import app
from storefront.api.metrics import metrics_service
from storefront.personalization.generator import RecommendationGeneratorError
from tests.conftest import VISITOR_HEADERS, build_test_engine


class BrokenCatalog:
    def list_catalog(self, limit):
        raise ConnectionError("catalog database unreachable")

    def get_catalog_item(self, item_id):
        raise ConnectionError("catalog database unreachable")


class BrokenRepository:
    def get_active_experiment(self, name):
        raise ConnectionError("experiments table unreachable")

    def list_active_experiments(self, test_type, target_id=None):
        raise ConnectionError("experiments table unreachable")


def _client_for(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    return TestClient(app)


def test_missing_visitor_header(client):
    """Test that visitor endpoints require the X-Visitor-Id header."""
    assert client.get("/signals/profile").status_code == 422
    assert client.get("/recommend/for-you").status_code == 422
    assert client.get("/experiments/checkout_button/assignment").status_code == 422


def test_invalid_signal_payload(client):
    response = client.post("/signals/category-view", json={}, headers=VISITOR_HEADERS)
    assert response.status_code == 422


def test_catalog_failure_degrades_feeds():
    """Test that a broken catalog yields empty feeds, not errors."""
    engine = build_test_engine(catalog=BrokenCatalog())
    try:
        client = _client_for(engine)

        response = client.get("/recommend/for-you", headers=VISITOR_HEADERS)
        assert response.status_code == 200
        assert response.json() == {"items": [], "reasoning": "", "source": "unavailable"}

        assert client.get("/recommend/similar/e1").json() == {"items": []}
        assert client.get("/metrics").json()["feeds"]["for_you"]["degraded"] >= 1
    finally:
        app.dependency_overrides.clear()
        engine.dispatcher.close()


def test_experiment_backend_failure_degrades_assignment():
    """Test that a broken experiment backend returns no assignment."""
    engine = build_test_engine()
    engine.experiments.repository = BrokenRepository()
    try:
        client = _client_for(engine)

        data = client.get(
            "/experiments/checkout_button/assignment", headers=VISITOR_HEADERS
        ).json()
        assert data["variant"] is None

        conversion = client.post(
            "/experiments/checkout_button/conversion", headers=VISITOR_HEADERS
        ).json()
        assert conversion == {"recorded": False}

        assert client.get("/experiments").json() == []
    finally:
        app.dependency_overrides.clear()
        engine.dispatcher.close()


def test_experiment_not_found(client):
    """Test that unknown experiment ids return a structured 404."""
    response = client.get("/admin/experiments/missing/results")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "ExperimentNotFoundError"
    assert "not found" in data["message"]
    assert data["details"] == {"experiment_id": "missing"}


def test_not_found_on_every_admin_operation(client):
    assert client.patch("/admin/experiments/missing/active", json={"is_active": True}).status_code == 404
    assert client.post("/admin/experiments/missing/winner", json={"variant": "control"}).status_code == 404
    assert client.delete("/admin/experiments/missing").status_code == 404


def test_invalid_winner_variant(client):
    response = client.post("/admin/experiments/exp-1/winner", json={"variant": "nope"})

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "InvalidExperimentError"
    assert data["details"] == {"variant": "nope"}


def test_invalid_experiment_definition(client):
    """Test that rejected definitions return a structured 400."""
    response = client.post("/admin/experiments", json={
        "name": "bad_split",
        "variants": [{"name": "control"}, {"name": "variant"}],
        "traffic_split": {"control": -10, "variant": 110},
    })

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "InvalidExperimentError"
    assert "negative" in data["message"]


def test_experiment_without_variants(client):
    response = client.post("/admin/experiments", json={
        "name": "empty",
        "variants": [],
        "traffic_split": {},
    })
    assert response.status_code == 422


class FailingGenerator:
    def generate(self, catalog, context, limit):
        raise RecommendationGeneratorError("Generator returned HTTP 500", status_code=500)


def test_generator_failure_is_reported_as_fallback():
    """Test that a generator outage still serves items and is counted as degraded."""
    engine = build_test_engine(generator=FailingGenerator())
    metrics_service.reset()
    try:
        client = _client_for(engine)

        data = client.get("/recommend/for-you?limit=3", headers=VISITOR_HEADERS).json()
        assert data["source"] == "fallback"
        assert data["reasoning"] == ""
        assert len(data["items"]) == 3

        feed = client.get("/metrics").json()["feeds"]["for_you"]
        assert feed == {**feed, "requests": 1, "degraded": 1}
    finally:
        app.dependency_overrides.clear()
        engine.dispatcher.close()
