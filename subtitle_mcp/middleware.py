"""
HTTP middleware for subtitle-mcp.

This module provides middleware for security headers, request ID tracing and
the optional bearer token that guards the MCP transport endpoints.
"""

import secrets
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from structlog.contextvars import bind_contextvars, clear_contextvars

# Request ID context variable
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

PROTECTED_PATHS = ("/mcp", "/sse", "/message")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all HTTP responses.

    This middleware adds the following security headers:
    - X-Content-Type-Options: nosniff - Prevents MIME type sniffing
    - X-Frame-Options: DENY - Prevents clickjacking attacks
    - Content-Security-Policy - Restricts resource sources (relaxed for the docs UI)
    - Strict-Transport-Security (HTTPS only) - Enforces HTTPS connections
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        # Swagger UI loads its assets from a CDN
        if request.url.path.startswith(("/docs", "/redoc", "/openapi")):
            response.headers["Content-Security-Policy"] = (
                "default-src 'self' 'unsafe-inline'; "
                "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "img-src 'self' https://fastapi.tiangolo.com"
            )
        else:
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HSTS only if using HTTPS (avoid browser warnings on HTTP)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request ID to the structlog context and echo it in X-Request-ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request_id_var.set(request_id)

        clear_contextvars()
        bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def is_authorized(authorization: str | None, token: str) -> bool:
    """Constant-time comparison of an ``Authorization: Bearer`` header with the token."""
    if not authorization:
        return False
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        return False
    return secrets.compare_digest(credentials.strip().encode(), token.encode())


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Require ``Authorization: Bearer <token>`` on the MCP transport endpoints.

    Health, discovery and REST endpoints stay open. CORS preflight requests
    are let through.
    """

    def __init__(self, app, token: str, protected_paths: tuple[str, ...] = PROTECTED_PATHS):
        super().__init__(app)
        self.token = token
        self.protected_paths = protected_paths

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method != "OPTIONS" and request.url.path in self.protected_paths:
            if not is_authorized(request.headers.get("Authorization"), self.token):
                return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)
