"""
FastAPI application for subtitle-mcp.

Serves the MCP tool surface over two transports:

- streamable HTTP: ``POST/GET/DELETE /mcp`` with the ``Mcp-Session-Id`` header
- Server-Sent Events: ``GET /sse`` plus ``POST /message?sessionId=``

and a small REST API over the same resolver, along with health, failure-log
and server-card endpoints.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from mcp.types import PARSE_ERROR
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from subtitle_mcp import __version__
from subtitle_mcp.cache import create_cache
from subtitle_mcp.config import settings
from subtitle_mcp.endpoints import message_endpoint, resolve_public_base_url
from subtitle_mcp.errors import NotFoundError, SessionError, SubtitleServiceError, UpstreamError, ValidationError
from subtitle_mcp.middleware import BearerAuthMiddleware, RequestIdMiddleware, SecurityHeadersMiddleware
from subtitle_mcp.models import FailureRecord, SubtitleType, VideoChapters, VideoMetadata
from subtitle_mcp.resolver import TranscriptResolver
from subtitle_mcp.service import get_extractor, is_ytdlp_available
from subtitle_mcp.sessions import SessionRegistry, SessionSweeper
from subtitle_mcp.tools import (
    TOOLS,
    SERVER_NAME,
    AvailableSubtitlesOutput,
    RawSubtitlesOutput,
    SubtitleInput,
    ToolDispatcher,
    TranscriptOutput,
    jsonrpc_error,
    render_raw_subtitles,
    render_transcript,
)
from subtitle_mcp.transport import EventStreamTransport, StreamableTransport
from subtitle_mcp.utils import sanitize_for_log, validate_video_reference
from subtitle_mcp.whisper import WhisperClient

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logger = structlog.get_logger()

SESSION_HEADER = "Mcp-Session-Id"


def get_remote_address_proxied(request: Request) -> str:
    """Get client address, considering X-Forwarded-For header."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


# Initialize rate limiter with proxy support
limiter = Limiter(key_func=get_remote_address_proxied, enabled=settings.rate_limit_enabled)

# Process-wide components shared by every session
cache = create_cache(settings)
extractor = get_extractor(settings)
whisper = WhisperClient(settings, extractor)
resolver = TranscriptResolver(settings, extractor, cache, whisper)
sessions = SessionRegistry()
sweeper = SessionSweeper(sessions, ttl=settings.session_ttl, interval=settings.session_cleanup_interval)

# Track app startup time for uptime calculation
_app_start_time = time.time()


# ============================================================================
# Lifespan Context Manager
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    logger.info("=" * 60)
    logger.info(f"subtitle-mcp {__version__} starting")
    logger.info("=" * 60)
    logger.info("Extraction:")
    logger.info(f"  - Browser Impersonation: {settings.ytdlp_impersonate_target or 'off'}")
    logger.info(f"  - Request Timeout: {settings.ytdlp_request_timeout}s")
    logger.info(f"  - Proxy: {'configured' if settings.ytdlp_proxy else 'none'}")
    logger.info(f"  - Whisper Fallback: {settings.whisper_mode}")
    logger.info("Sessions:")
    logger.info(f"  - TTL: {settings.session_ttl}s, sweep every {settings.session_cleanup_interval}s")
    logger.info(f"  - Public URLs: {', '.join(settings.public_urls) or 'relative'}")
    logger.info("Security features:")
    logger.info(f"  - Rate Limiting: {'enabled' if settings.rate_limit_enabled else 'disabled'} ({rate_limit()})")
    logger.info(f"  - Bearer Auth: {'enabled' if settings.mcp_auth_token else 'disabled'}")
    logger.info("=" * 60)

    if not is_ytdlp_available():
        logger.warning("yt-dlp is not available; subtitle extraction will fail")

    await cache.connect()
    sweeper.start()

    yield

    await sweeper.stop()
    sessions.close_all()
    await whisper.close()
    await cache.disconnect()
    logger.info("subtitle-mcp stopped")


# Create FastAPI app
app = FastAPI(
    title="subtitle-mcp",
    description="MCP server and REST API for video transcripts and subtitles",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ============================================================================
# Middleware Configuration
# ============================================================================


def configure_middleware():
    """Configure middleware based on settings."""
    # Middleware added last runs first: auth sits behind CORS so preflights get CORS headers
    if settings.mcp_auth_token:
        app.add_middleware(BearerAuthMiddleware, token=settings.mcp_auth_token)
        logger.info("Bearer auth enabled for MCP endpoints")

    if settings.enable_security_headers:
        app.add_middleware(SecurityHeadersMiddleware)
        logger.info("Security headers middleware enabled")

    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER, "X-Request-ID"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    if settings.rate_limit_enabled:
        logger.info(f"Rate limiting enabled: {settings.rate_limit_per_minute} requests/minute")


# Configure middleware on import
configure_middleware()


# ============================================================================
# Pydantic Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    detail: str | None = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Response model for the health check."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: float = Field(..., description="Current Unix timestamp")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    cache: dict = Field(default_factory=dict, description="Cache statistics")
    sessions: dict = Field(default_factory=dict, description="Active sessions per transport")
    rate_limiting: dict = Field(default_factory=dict, description="Rate limiting status")
    whisper: dict = Field(default_factory=dict, description="Speech-to-text fallback status")


# ============================================================================
# Exception Handlers
# ============================================================================


def _error_response(status_code: int, error: str, message: str, detail: str | None = None) -> Response:
    error_response = ErrorResponse(error=error, message=message, detail=detail)
    return Response(
        content=error_response.model_dump_json(),
        status_code=status_code,
        media_type="application/json",
    )


@app.exception_handler(SubtitleServiceError)
async def subtitle_error_handler(request: Request, exc: SubtitleServiceError):
    """
    Map domain errors to HTTP responses.

    Returns:
        400 for validation errors, 404 for not-found and unknown sessions,
        503 when the platform rate-limits us (HTTP 429 upstream), 502 for
        other upstream failures
    """
    if isinstance(exc, ValidationError):
        logger.info(f"Validation error: {exc.message}")
        return _error_response(400, exc.title, exc.message)
    if isinstance(exc, (NotFoundError, SessionError)):
        return _error_response(404, exc.title, exc.message)
    if isinstance(exc, UpstreamError) and "429" in exc.message:
        logger.warning(f"Upstream rate limit detected: {exc.message}")
        return _error_response(503, "rate_limit_exceeded", "Upstream rate limit detected. Please retry later.")

    logger.error(f"Upstream error: {exc.message}")
    return _error_response(502, exc.title, "Upstream extraction failed", exc.message[:200])


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle Pydantic validation errors with detailed feedback.

    Includes specific field and error information to help developers
    understand what went wrong with their request.
    """
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}")

    error_details = []
    for error in errors:
        loc = " -> ".join(str(x) for x in error["loc"])
        error_details.append(f"{loc}: {error['msg']}")

    return _error_response(400, "validation_error", "Invalid request parameters", "; ".join(error_details))


# ============================================================================
# MCP: streamable HTTP transport
# ============================================================================


def is_initialize_request(message: Any) -> bool:
    return isinstance(message, dict) and message.get("method") == "initialize"


def _parse_error() -> JSONResponse:
    return JSONResponse(jsonrpc_error(None, PARSE_ERROR, "Parse error"), status_code=400)


@app.post("/mcp", include_in_schema=False)
@limiter.limit(rate_limit)
async def mcp_post(request: Request) -> Response:
    """
    Handle one JSON-RPC message on the streamable transport.

    An ``initialize`` request without a session header opens a new session;
    every other message must carry the session id returned for it.
    """
    try:
        message = await request.json()
    except ValueError:
        return _parse_error()

    session_id = request.headers.get(SESSION_HEADER)
    if session_id:
        session = sessions.get("streamable", session_id)
        if session is None:
            return PlainTextResponse("Unknown session", status_code=404)
    elif is_initialize_request(message):
        dispatcher = ToolDispatcher(resolver, settings)
        session = sessions.create("streamable", dispatcher, StreamableTransport(dispatcher))
    else:
        return PlainTextResponse("Bad Request: No valid session ID provided", status_code=400)

    result = await session.transport.handle(message)
    headers = {SESSION_HEADER: session.id}
    if result is None:
        return Response(status_code=202, headers=headers)
    return JSONResponse(result, headers=headers)


@app.api_route("/mcp", methods=["GET", "DELETE"], include_in_schema=False)
@limiter.limit(rate_limit)
async def mcp_session(request: Request) -> Response:
    """GET is not offered (no server-initiated stream); DELETE closes the session."""
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return PlainTextResponse("Invalid or missing session ID", status_code=400)
    if sessions.get("streamable", session_id) is None:
        return PlainTextResponse("Unknown session", status_code=404)

    if request.method == "DELETE":
        sessions.delete(session_id)
        return Response(status_code=200)
    return PlainTextResponse("Method Not Allowed", status_code=405, headers={"Allow": "POST, DELETE"})


# ============================================================================
# MCP: Server-Sent Events transport
# ============================================================================


@app.get("/sse", include_in_schema=False)
@limiter.limit(rate_limit)
async def sse_connect(request: Request) -> StreamingResponse:
    """Open an event stream; the first event names the endpoint for follow-up messages."""
    dispatcher = ToolDispatcher(resolver, settings)
    transport = EventStreamTransport(dispatcher)
    session = sessions.create("event-stream", dispatcher, transport)

    base_url = resolve_public_base_url(request.headers, settings.public_urls, settings.smithery_public_url)
    transport.open(message_endpoint(base_url, session.id))

    async def event_stream():
        try:
            async for event in transport.events():
                yield event
        finally:
            sessions.delete(session.id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/message", include_in_schema=False)
@limiter.limit(rate_limit)
async def sse_message(request: Request, session_id: str | None = Query(None, alias="sessionId")) -> Response:
    """Deliver a JSON-RPC message to an event-stream session; the reply is pushed on the stream."""
    if not session_id:
        return JSONResponse({"error": "Missing sessionId"}, status_code=400)

    session = sessions.get("event-stream", session_id)
    if session is None:
        return JSONResponse({"error": "Unknown session"}, status_code=404)

    try:
        message = await request.json()
    except ValueError:
        return _parse_error()

    await session.transport.handle(message)
    return PlainTextResponse("Accepted", status_code=202)


# ============================================================================
# REST API
# ============================================================================


def _subtitle_args(
    url: str, subtitle_type: SubtitleType | None, lang: str | None, response_limit: int | None, next_cursor: str | None
) -> SubtitleInput:
    return SubtitleInput(
        url=url, type=subtitle_type, lang=lang, response_limit=response_limit, next_cursor=next_cursor
    )


URL_QUERY = Query(..., min_length=1, max_length=500, description="Video URL or YouTube video ID")
TYPE_QUERY = Query(None, alias="type", description="'official' or 'auto'; omit type and lang for auto-discovery")
LANG_QUERY = Query(None, max_length=10, description="Language code (e.g., en, en-orig, pt-BR)")
LIMIT_QUERY = Query(None, description="Maximum characters per page (clamped to the configured range)")
CURSOR_QUERY = Query(None, description="Cursor from a previous truncated response")


@app.get(
    "/api/v1/subtitles",
    response_model=TranscriptOutput,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL, language or cursor"},
        404: {"model": ErrorResponse, "description": "Subtitles not found"},
        429: {"description": "Too many requests"},
    },
    summary="Get a video transcript as plain text",
)
@limiter.limit(rate_limit)
async def get_subtitles(
    request: Request,
    url: str = URL_QUERY,
    subtitle_type: SubtitleType | None = TYPE_QUERY,
    lang: str | None = LANG_QUERY,
    response_limit: int | None = LIMIT_QUERY,
    next_cursor: str | None = CURSOR_QUERY,
) -> TranscriptOutput:
    """
    Resolve a transcript and return one page of cleaned plain text.

    **Example Usage:**
    ```bash
    curl "http://localhost:4200/api/v1/subtitles?url=https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    curl "http://localhost:4200/api/v1/subtitles?url=dQw4w9WgXcQ&type=official&lang=en&next_cursor=50000"
    ```
    """
    args = _subtitle_args(url, subtitle_type, lang, response_limit, next_cursor)
    result = await resolver.resolve(validate_video_reference(args.url), args.type, args.lang)
    return render_transcript(result, args, settings)


@app.get(
    "/api/v1/subtitles/raw",
    response_model=RawSubtitlesOutput,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL, language or cursor"},
        404: {"model": ErrorResponse, "description": "Subtitles not found"},
    },
    summary="Get raw SRT/VTT subtitles",
)
@limiter.limit(rate_limit)
async def get_raw_subtitles(
    request: Request,
    url: str = URL_QUERY,
    subtitle_type: SubtitleType | None = TYPE_QUERY,
    lang: str | None = LANG_QUERY,
    response_limit: int | None = LIMIT_QUERY,
    next_cursor: str | None = CURSOR_QUERY,
) -> RawSubtitlesOutput:
    args = _subtitle_args(url, subtitle_type, lang, response_limit, next_cursor)
    result = await resolver.resolve(validate_video_reference(args.url), args.type, args.lang)
    return render_raw_subtitles(result, args, settings)


@app.get(
    "/api/v1/subtitles/languages",
    response_model=AvailableSubtitlesOutput,
    response_model_by_alias=True,
    responses={404: {"model": ErrorResponse, "description": "Video not found"}},
    summary="List available subtitle languages",
)
@limiter.limit(rate_limit)
async def list_languages(request: Request, url: str = URL_QUERY) -> AvailableSubtitlesOutput:
    catalog = await resolver.get_catalog(validate_video_reference(url))
    logger.info(f"Languages for {sanitize_for_log(url)}: {len(catalog.official)} official, {len(catalog.auto)} auto")
    return AvailableSubtitlesOutput(video_id=catalog.video_id, official=catalog.official, auto=catalog.auto)


@app.get(
    "/api/v1/video/info",
    response_model=VideoMetadata,
    responses={404: {"model": ErrorResponse, "description": "Video not found"}},
    summary="Get video metadata",
)
@limiter.limit(rate_limit)
async def get_video_info(request: Request, url: str = URL_QUERY) -> VideoMetadata:
    return await resolver.get_video_info(validate_video_reference(url))


@app.get(
    "/api/v1/video/chapters",
    response_model=VideoChapters,
    responses={404: {"model": ErrorResponse, "description": "Video not found"}},
    summary="Get video chapters",
)
@limiter.limit(rate_limit)
async def get_video_chapters(request: Request, url: str = URL_QUERY) -> VideoChapters:
    return await resolver.get_video_chapters(validate_video_reference(url))


# ============================================================================
# Operational endpoints
# ============================================================================


@app.get("/", summary="Simple health check")
async def root() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "service": SERVER_NAME, "version": __version__}


@app.get("/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    """
    Health check with service metrics.

    Returns service status, uptime, cache statistics and active sessions.
    A degraded cache backend keeps the service up (reads fall through to
    live resolution) but is reported as ``degraded``.
    """
    cache_stats = await cache.get_stats()
    return HealthResponse(
        status="degraded" if cache_stats.get("degraded") else "ok",
        service=SERVER_NAME,
        version=__version__,
        timestamp=time.time(),
        uptime_seconds=time.time() - _app_start_time,
        cache=cache_stats,
        sessions=sessions.active_counts(),
        rate_limiting={
            "enabled": settings.rate_limit_enabled,
            "per_minute": settings.rate_limit_per_minute,
        },
        whisper={"mode": settings.whisper_mode},
    )


@app.get("/failures", response_model=list[FailureRecord], summary="Recent failed resolutions")
async def failures() -> list[FailureRecord]:
    """Resolutions that exhausted every candidate including the speech-to-text fallback."""
    return resolver.recent_failures()


@app.get("/.well-known/mcp/server-card.json", include_in_schema=False)
async def server_card() -> dict[str, Any]:
    """Static MCP server card for discovery; served without auth so registries can read it."""
    return {
        "serverInfo": {"name": SERVER_NAME, "version": __version__},
        "authentication": {
            "required": bool(settings.mcp_auth_token),
            "schemes": ["bearer"] if settings.mcp_auth_token else [],
        },
        "tools": [tool.model_dump(by_alias=True, exclude_none=True, mode="json") for tool in TOOLS],
        "resources": [],
        "prompts": [],
    }
