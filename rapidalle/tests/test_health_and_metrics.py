from rapidalle.core.database import drop_all_tables
from rapidalle.core.metrics import normalize_path


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_readyz_ok_when_tables_exist(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_reports_missing_tables(client):
    drop_all_tables()
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "users" in resp.json()["detail"]


def test_metrics_export_counts_requests_and_outcomes(client):
    client.post("/api/generate", json={"theme": "a", "description": "b"}, headers={"X-User-Id": "metrics-user"})
    client.post("/api/generate", json={"theme": ""}, headers={"X-User-Id": "metrics-user"})

    text = client.get("/metrics").text

    assert 'http_requests_total{method="POST",path="/api/generate",status="200"} 1.0' in text
    assert 'generation_requests_total{outcome="accepted"} 1.0' in text
    assert 'generation_requests_total{outcome="invalid"} 1.0' in text
    assert "# TYPE cache_entries gauge" in text


def test_normalize_path_collapses_ids():
    assert normalize_path("/api/runs/run_0123456789abcdef/cancel") == "/api/runs/:id/cancel"
    assert normalize_path("/api/images/3f2b8c1e-0000-4000-8000-000000000000") == "/api/images/:id"
    assert normalize_path("/api/prompts/42") == "/api/prompts/:id"


def test_readyz_when_database_unreachable(client, monkeypatch):
    monkeypatch.setattr("rapidalle.api.health.check_connection", lambda: False)
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unreachable"
