import pytest


def test_health_endpoint():
    """Test health endpoint"""
    from sheetpipe.main import app
    from fastapi.testclient import TestClient

    client = TestClient(app)
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["processor_running"] is False
