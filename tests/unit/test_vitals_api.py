import pytest
from fastapi.testclient import TestClient

from services.vitals_service.errors import FieldDataTransportError
from services.vitals_service.integrations.crux_api import FieldDataResult, FieldDataScope, FormFactor
from services.vitals_service.main import app, get_field_data_client
from services.vitals_service.metrics.metric import Distribution
from services.vitals_service.metrics.thresholds import MetricKind


class StubClient:

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def load(self, url, form_factor):
        self.calls.append((url, form_factor))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use(stub):
    app.dependency_overrides[get_field_data_client] = lambda: stub
    return stub


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_reconcile_with_page_data(client):
    stub = _use(StubClient(result=FieldDataResult(
        scope=FieldDataScope.PAGE,
        effective_url="https://example.com/blog/post",
        distributions={MetricKind.CLS: Distribution(good=0.62, needs_improvement=0.25, poor=0.13)},
        form_factor=FormFactor.DESKTOP,
    )))

    r = client.post("/vitals/reconcile", json={
        "url": "https://example.com/blog/post",
        "form_factor": "DESKTOP",
        "samples": {"lcp": {"value": 1800}, "cls": 0.15, "inp": {"value": 120}},
    })

    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "reconciled"
    assert body["scope"] == "page"
    assert body["form_factor"] == "DESKTOP"
    assert [m["id"] for m in body["metrics"]] == ["lcp", "cls"]
    cls = body["metrics"][1]
    assert cls["rating"] == "needs-improvement"
    assert cls["densities"] == ["62%", "25%", "13%"]
    assert cls["widths"] == ["62.00%", "25.00%", "13.00%"]
    assert stub.calls == [("https://example.com/blog/post", FormFactor.DESKTOP)]
    assert "X-Request-ID" in r.headers


def test_reconcile_echoes_sample_timestamp(client):
    _use(StubClient(error=FieldDataTransportError("HTTP 503", status_code=503)))

    r = client.post("/vitals/reconcile", json={
        "url": "https://example.com/",
        "timestamp": "2024-05-01T14:03:09Z",
        "samples": {"lcp": 1800},
    })

    assert r.status_code == 200
    body = r.json()
    assert body["measured_at_display"] == "14:03:09"
    assert body["measured_at"].startswith("2024-05-01T14:03:09")

    r = client.post("/vitals/reconcile", json={"url": "https://example.com/", "samples": {"lcp": 1800}})
    assert r.json()["measured_at_display"] is None


def test_reconcile_degrades_on_field_failure(client):
    _use(StubClient(error=FieldDataTransportError("HTTP 503", status_code=503)))

    r = client.post("/vitals/reconcile", json={
        "url": "https://example.com/",
        "samples": {"lcp": 5200, "ttfb": 300},
    })

    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "field-unavailable"
    assert body["field_data_available"] is False
    assert body["status_message"] == "Local metrics only (field data unavailable)"
    lcp = body["metrics"][0]
    assert lcp["rating"] == "poor"
    assert lcp["position"] == 1.0
    assert lcp["overflowed"] is True


def test_unknown_metric_is_rejected(client):
    _use(StubClient(error=AssertionError("should not be called")))

    r = client.post("/vitals/reconcile", json={"url": "https://example.com/", "samples": {"fid": 10}})

    assert r.status_code == 400
    assert "Unknown metric kind" in r.json()["error"]["message"]


def test_negative_sample_is_rejected(client):
    _use(StubClient())

    r = client.post("/vitals/reconcile", json={"url": "https://example.com/", "samples": {"cls": -0.1}})

    assert r.status_code == 400
    assert r.json()["error"]["code"] == 400


def test_invalid_url_is_validation_error(client):
    _use(StubClient())

    r = client.post("/vitals/reconcile", json={"url": "not a url", "samples": {}})

    assert r.status_code == 422
    assert r.json()["error"]["message"] == "Validation error"
