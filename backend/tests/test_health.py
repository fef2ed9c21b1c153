from fastapi.testclient import TestClient

from learnhub.main import create_app


def test_health_ok():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
    assert r.headers.get("X-Request-ID")


def test_health_live():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health/live")
    assert r.status_code == 200
    assert r.json().get("status") == "live"


def test_health_ready(client):
    r = client.get("/health/ready")
    assert r.status_code == 200
    assert r.json().get("status") == "ready"


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"


def test_foreign_origin_cannot_post(client):
    r = client.post("/auth/token", data={"username": "x", "password": "y"}, headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.json()["error_code"] == "forbidden"
