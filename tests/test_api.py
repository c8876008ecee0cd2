"""HTTP surface tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from conftest import NOW_MS
from storefront_analyzer.api.main import app, get_loop
from storefront_analyzer.behavior.classifiers import IdentityClassifier
from storefront_analyzer.learning.loop import ImprovementLoop
from storefront_analyzer.learning.store import LearningStore


def raw_event(n, event_type="page_view", session="s1", **fields):
    data = {"id": f"e{n}", "sessionId": session, "type": event_type, "timestamp": NOW_MS - 1000}
    data.update(fields)
    return data


def rage_payload():
    return [
        raw_event(s * 3 + n, "rage_click", session=f"s{s}", x=200 + n, y=150,
                  elementSelector="button[data-cta]", elementText="Shop now",
                  viewport={"width": 1280, "height": 800}, pageUrl="/store")
        for s in range(4) for n in range(3)
    ]


@pytest.fixture
def loop(settings):
    return ImprovementLoop(LearningStore(), IdentityClassifier(), settings, lambda: NOW_MS)


@pytest.fixture
def client(loop):
    app.dependency_overrides[get_loop] = lambda: loop
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestOperational:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_lifespan_runs(self, loop):
        app.dependency_overrides[get_loop] = lambda: loop
        try:
            with TestClient(app) as managed:
                assert managed.get("/health").status_code == 200
        finally:
            app.dependency_overrides.clear()

    def test_metrics(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "storefront_api_requests_total" in response.text


class TestEventValidation:
    def test_non_object_event(self, client):
        response = client.post("/identity", json={"events": [raw_event(0), "oops"]})
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "invalid_event"
        assert body["index"] == 1

    def test_negative_timestamp(self, client):
        bad = raw_event(0)
        bad["timestamp"] = -5
        response = client.post("/identity", json={"events": [bad]})
        assert response.status_code == 422
        assert response.json()["index"] == 0


class TestInsights:
    def test_json_report(self, client):
        response = client.post("/insights", json={"events": rage_payload(), "now_ms": NOW_MS})
        assert response.status_code == 200
        body = response.json()
        assert body["total_insights"] >= 1
        assert body["insights"][0]["category"] == "ux_friction"

    def test_not_enough_data(self, client):
        response = client.post("/insights", json={"events": [raw_event(0)], "now_ms": NOW_MS})
        assert response.json()["summary"] == "Not enough events for meaningful analysis"

    def test_markdown_report(self, client):
        response = client.post("/insights", json={"events": rage_payload(), "now_ms": NOW_MS, "format": "markdown"})
        assert response.status_code == 200
        assert response.text.startswith("# Actionable Insights Report")


class TestIdentity:
    def test_classify(self, client):
        response = client.post("/identity", json={"events": rage_payload(), "now_ms": NOW_MS})
        assert response.status_code == 200
        body = response.json()
        assert body["identity"]["state"] == "frustrated"
        assert body["ui_recommendations"]["simplify_layout"] is True

    def test_fix_with_element_index(self, client):
        response = client.post("/identity/fix", json={
            "identity_state": "comparison_focused",
            "confidence": 0.7,
            "now_ms": 1234,
            "element_index": [
                {"selector": "button[data-cta]"},
                {"full_path": "body > main > section.testimonials"},
            ],
        })
        assert response.status_code == 200
        body = response.json()
        assert body["validation"]["index_loaded"] is True
        assert body["validation"]["invalid"] == ["#hero h1"]
        assert body["fix"]["issue_id"] == "identity_comparison_focused_1234"
        assert body["description"].startswith('## Identity-Based Fix for "comparison_focused" User')

    def test_fix_without_index(self, client):
        response = client.post("/identity/fix", json={"identity_state": "cautious"})
        assert response.json()["validation"]["index_loaded"] is False
        assert response.json()["validation"]["invalid"] == []


class TestCycles:
    def test_waits_without_force(self, client):
        response = client.post("/cycles", json={"events": [raw_event(0)]})
        body = response.json()
        assert body["triggered"] is False
        assert body["reason"] == "Waiting for more events (1 < 50)"
        assert body["cycle"] is None

    def test_forced_cycle_and_history(self, client):
        response = client.post("/cycles", json={"events": [raw_event(0)], "force": True})
        body = response.json()
        assert body["triggered"] is True
        assert body["cycle"]["id"] == f"cycle_{NOW_MS}_1"
        assert [c["id"] for c in client.get("/cycles").json()] == [body["cycle"]["id"]]

    def test_anomaly_triggers(self, client):
        response = client.post("/cycles", json={"events": rage_payload()[:5]})
        body = response.json()
        assert body["triggered"] is True
        assert body["cycle"]["trigger_reason"] == "anomaly"

    def test_measure(self, client):
        cycle_id = client.post("/cycles", json={"events": [raw_event(0)], "force": True}).json()["cycle"]["id"]
        response = client.post(f"/cycles/{cycle_id}/measure", json={"before": [raw_event(1)], "after": [raw_event(2)]})
        assert response.status_code == 200
        assert response.json()["impact"]["significance"] == 0.0

    def test_measure_unknown_cycle(self, client):
        response = client.post("/cycles/cycle_nope/measure", json={"before": [], "after": []})
        assert response.status_code == 404
        assert response.json()["detail"] == "cycle_not_found"


class TestLearning:
    def test_record_outcome(self, client):
        payload = {"identity_state": "cautious", "approved": True, "impact": 40, "decision_id": "d1"}
        first = client.post("/learning/outcomes", json=payload).json()
        assert first["confidence"] == pytest.approx(0.696)
        replay = client.post("/learning/outcomes", json=payload).json()
        assert replay["times_applied"] == 1
        stats = client.get("/learning").json()
        assert stats["records"][0]["identity_state"] == "cautious"
        assert stats["top_performing"] == []

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_impact_is_rejected(self, client, literal):
        body = '{"identity_state": "frustrated", "approved": true, "impact": %s}' % literal
        response = client.post("/learning/outcomes", content=body, headers={"Content-Type": "application/json"})
        assert response.status_code == 422
        stats = client.get("/learning")
        assert stats.status_code == 200
        assert stats.json()["records"] == []


class TestBusinessConfigBounds:
    def test_huge_config_is_rejected(self, client):
        response = client.post("/insights", json={
            "events": rage_payload(),
            "now_ms": NOW_MS,
            "business_config": {"monthly_visitors": 1e200, "average_order_value": 1e200},
        })
        assert response.status_code == 422
