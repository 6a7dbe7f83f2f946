"""
Public endpoint resolution for the event-stream transport.

The endpoint event must carry a URL the client can reach. Behind reverse
proxies and gateways the server is known under several hostnames, so the base
URL is picked from the configured list using the request headers.
"""

from collections.abc import Mapping
from urllib.parse import urlsplit

GATEWAY_MARKER_HEADER = "cf-worker"
GATEWAY_MARKER_VALUE = "smithery.ai"
GATEWAY_REGISTRY_HOST = "server.smithery.ai"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # Starlette Headers are case-insensitive; plain dicts in tests may not be
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def _url_host(url: str) -> str | None:
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def _strip_port(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal: [::1]:8080
        return host.split("]", 1)[0] + "]"
    return host.split(":", 1)[0]


def is_gateway_request(headers: Mapping[str, str]) -> bool:
    marker = _header(headers, GATEWAY_MARKER_HEADER)
    return bool(marker) and GATEWAY_MARKER_VALUE in marker.lower()


def resolve_public_base_url(
    headers: Mapping[str, str],
    public_urls: list[str],
    gateway_override: str | None = None,
) -> str | None:
    """
    Pick the base URL to advertise to an event-stream client.

    Order:
        1. gateway marker present and an override configured: the override
        2. gateway marker present: the first configured URL, if it is on the gateway registry host
        3. X-Forwarded-Host (first entry), else Host, matched against configured hosts
        4. the first configured URL

    Returns:
        A base URL without trailing slash, or None when no URLs are configured
        (the caller then advertises the relative endpoint)
    """
    if not public_urls:
        return None

    if is_gateway_request(headers):
        if gateway_override:
            return gateway_override.rstrip("/")
        if _url_host(public_urls[0]) == GATEWAY_REGISTRY_HOST:
            return public_urls[0]

    forwarded = _header(headers, "x-forwarded-host")
    request_host = forwarded.split(",", 1)[0] if forwarded else _header(headers, "host")
    if request_host and request_host.strip():
        wanted = _strip_port(request_host)
        for url in public_urls:
            if _url_host(url) == wanted:
                return url

    return public_urls[0]


def message_endpoint(base_url: str | None, session_id: str) -> str:
    """
    Build the endpoint advertised in the first event of a stream.

    Examples:
        >>> message_endpoint(None, "abc")
        '/message?sessionId=abc'
        >>> message_endpoint("https://mcp.example.com", "abc")
        'https://mcp.example.com/message?sessionId=abc'
    """
    return f"{base_url or ''}/message?sessionId={session_id}"
