from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_live_probe():
    response = client.get("/live")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["Cache-Control"] == "no-store"


def test_health_reports_database():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] is True
    assert response.json()["environment"] == "test"


def test_prometheus_exposition():
    response = client.get("/metrics/prometheus")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "coachmarket_webhook_events_total" in response.text
