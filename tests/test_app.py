"""
Tests for app-level wiring: health endpoints, middleware headers and the
error envelope.
"""

from gemini_chat.error_handlers import ErrorCode


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"

    def test_db_pool(self, client):
        body = client.get("/health/db-pool").json()
        assert body["pooling_enabled"] is False


class TestMiddleware:

    def test_request_id_generated(self, client):
        response = client.get("/")
        assert response.headers["X-Request-ID"]
        assert "X-Process-Time" in response.headers

    def test_request_id_propagated(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_security_headers(self, client):
        response = client.get("/")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestErrorEnvelope:

    def test_error_shape(self, client):
        response = client.get("/chatroom", headers={"X-Request-ID": "req-456"})

        error = response.json()["error"]
        assert response.status_code == 401
        assert error["code"] == ErrorCode.UNAUTHORIZED
        assert error["message"] == "Bearer token required"
        assert error["request_id"] == "req-456"
        assert "timestamp" in error

    def test_validation_details(self, client):
        response = client.post("/auth/send-otp", json={})

        error = response.json()["error"]
        assert response.status_code == 422
        assert error["details"]["validation_errors"][0]["field"] == "body.phone_no"
