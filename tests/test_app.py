"""
Service probes, metrics and request correlation.
"""
from leadflow.middleware.logging import resolve_correlation_id


async def test_root_and_health(api):
    root = await api.get("/")
    health = await api.get("/health")

    assert root.json()["status"] == "running"
    assert health.json()["status"] == "healthy"
    assert health.json()["dispatcher"] == "stopped"


async def test_correlation_id_is_echoed(api):
    response = await api.get("/health", headers={"X-Correlation-Id": "  req-123  "})
    assert response.headers["x-correlation-id"] == "req-123"


async def test_correlation_id_is_generated_when_missing(api):
    response = await api.get("/health")
    assert len(response.headers["x-correlation-id"]) == 32


def test_correlation_id_is_truncated():
    assert resolve_correlation_id("x" * 300) == "x" * 128


async def test_metrics_endpoint_exposes_automation_counters(api):
    response = await api.get("/metrics")

    assert response.status_code == 200
    assert "automation_dispatch_cycles_total" in response.text
