from app.core.config import settings


def test_health_reports_environment(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "up"
    assert body["environment"] == "testing"
    assert body["version"] == settings.version


def test_readiness_checks_database(client):
    response = client.get("/readiness")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "components": {"database": "connected"}}


def test_root_names_the_service(client):
    assert client.get("/").json()["message"] == "StaffOS API"


def test_request_id_is_echoed_or_generated(client):
    echoed = client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert echoed.headers["X-Request-ID"] == "trace-123"

    generated = client.get("/health").headers["X-Request-ID"]
    assert generated and generated != "trace-123"


def test_responses_carry_security_headers(client):
    response = client.get("/api/auth/me")
    # Error responses go through the same middleware
    assert response.status_code == 401
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "X-Process-Time" in response.headers
