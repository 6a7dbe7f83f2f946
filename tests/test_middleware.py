"""Middleware tests for security headers, request ID and bearer auth."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from subtitle_mcp.middleware import BearerAuthMiddleware, is_authorized


class TestSecurityHeadersMiddleware:
    """Tests for SecurityHeadersMiddleware."""

    def test_security_headers_present(self, client):
        """Test that security headers are present in response."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Content-Security-Policy" in response.headers

    def test_csp_allows_swagger_ui(self, client):
        """Test that CSP allows scripts for Swagger UI paths."""
        response = client.get("/docs")
        csp = response.headers.get("Content-Security-Policy", "")
        assert "default-src 'self'" in csp
        assert "cdn.jsdelivr.net" in csp

    def test_csp_restricts_non_swagger_paths(self, client):
        """JSON endpoints load nothing, so everything is denied."""
        response = client.get("/health")
        csp = response.headers.get("Content-Security-Policy", "")
        assert "default-src 'none'" in csp

    def test_no_hsts_over_http(self, client):
        response = client.get("/")
        assert "Strict-Transport-Security" not in response.headers


class TestRequestIdMiddleware:
    """Tests for RequestIdMiddleware."""

    def test_request_id_header_present(self, client):
        response = client.get("/")

        assert response.status_code == 200
        # uuid4 hex
        assert len(response.headers["X-Request-ID"]) == 32

    def test_request_id_from_header(self, client):
        """Test that X-Request-ID header from request is used if provided."""
        custom_id = "custom-request-id-12345"
        response = client.get("/", headers={"X-Request-ID": custom_id})

        assert response.headers["X-Request-ID"] == custom_id

    def test_request_id_on_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert "X-Request-ID" in response.headers


class TestIsAuthorized:
    def test_valid(self):
        assert is_authorized("Bearer s3cret", "s3cret")
        assert is_authorized("bearer s3cret", "s3cret")

    def test_invalid(self):
        assert not is_authorized(None, "s3cret")
        assert not is_authorized("", "s3cret")
        assert not is_authorized("Bearer wrong", "s3cret")
        assert not is_authorized("Basic s3cret", "s3cret")
        assert not is_authorized("Bearer", "s3cret")


class TestBearerAuthMiddleware:
    """Only the MCP transport paths are protected."""

    def make_client(self):
        app = FastAPI()
        app.add_middleware(BearerAuthMiddleware, token="s3cret")

        @app.post("/mcp")
        async def mcp():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        return TestClient(app)

    def test_missing_token_rejected(self):
        response = self.make_client().post("/mcp", json={})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_token_rejected(self):
        response = self.make_client().post("/mcp", json={}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_valid_token_accepted(self):
        response = self.make_client().post("/mcp", json={}, headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200

    def test_unprotected_path(self):
        assert self.make_client().get("/health").status_code == 200

    def test_preflight_passes(self):
        response = self.make_client().options("/mcp")
        # No CORS middleware on this app: the route answers 405, not 401
        assert response.status_code == 405
