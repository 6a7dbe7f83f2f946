"""
MCP tool dispatcher.

One ToolDispatcher is bound to each session. It routes JSON-RPC messages
(initialize, ping, tools/list, tools/call) and runs the named tools against the
process-wide TranscriptResolver. Wire types come from the ``mcp`` package and
are serialized with their protocol aliases.

Tool failures caused by the caller or by exhausted resolution are returned as
tool results with ``isError: true``; protocol misuse is returned as a JSON-RPC
error.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import structlog
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    CallToolResult,
    ErrorData,
    Implementation,
    InitializeResult,
    JSONRPCResponse,
    ListToolsResult,
    ServerCapabilities,
    TextContent,
    Tool,
    ToolAnnotations,
    ToolsCapability,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from subtitle_mcp import __version__
from subtitle_mcp.config import Settings
from subtitle_mcp.errors import NotFoundError, SubtitleServiceError, ValidationError
from subtitle_mcp.models import SubtitleType, TranscriptResult, TranscriptSource
from subtitle_mcp.pagination import Page, paginate
from subtitle_mcp.resolver import TranscriptResolver
from subtitle_mcp.subtitles import detect_subtitle_format, parse_subtitles
from subtitle_mcp.utils import validate_video_reference

logger = structlog.get_logger(__name__)

SERVER_NAME = "subtitle-mcp"

SERVER_INSTRUCTIONS = (
    "Fetch transcripts, raw subtitles, available subtitle languages, metadata and "
    "chapters for videos on YouTube and other supported platforms. Long transcripts "
    "are paginated: pass next_cursor back to read the following page."
)

URL_DESCRIPTION = (
    "Video URL (supported: YouTube, Twitter/X, Instagram, TikTok, Twitch, Vimeo, "
    "Facebook, Bilibili, VK, Dailymotion) or YouTube video ID"
)


# ========== Tool inputs ==========


class UrlInput(BaseModel):
    url: str = Field(..., min_length=1, description=URL_DESCRIPTION)


class SubtitleInput(UrlInput):
    """Input for tools that return subtitle text; omit type and lang for auto-discovery."""

    type: SubtitleType | None = Field(default=None, description="'official' or 'auto' subtitles")
    lang: str | None = Field(default=None, description="Language code, e.g. 'en', 'en-orig', 'pt-BR'")
    response_limit: int | None = Field(
        default=None, description="Maximum characters per page (clamped to 1000-200000, default 50000)"
    )
    next_cursor: str | None = Field(default=None, description="Cursor from a previous truncated response")


# ========== Tool outputs ==========


class _PageOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    type: SubtitleType
    lang: str
    next_cursor: str | None = None
    is_truncated: bool
    total_length: int
    start_offset: int
    end_offset: int
    source: TranscriptSource | None = None


class TranscriptOutput(_PageOutput):
    text: str


class RawSubtitlesOutput(_PageOutput):
    format: Literal["srt", "vtt"]
    content: str


class AvailableSubtitlesOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    official: list[str]
    auto: list[str]


ToolHandler = Callable[[dict[str, Any]], Awaitable[CallToolResult]]


def _tool(name: str, title: str, description: str, input_model: type[BaseModel], output_model=None) -> Tool:
    return Tool(
        name=name,
        title=title,
        description=description,
        inputSchema=input_model.model_json_schema(),
        outputSchema=output_model.model_json_schema(by_alias=True) if output_model else None,
        annotations=ToolAnnotations(title=title, readOnlyHint=True, idempotentHint=True, openWorldHint=True),
    )


TOOLS: list[Tool] = [
    _tool(
        "get_transcript",
        "Get video transcript",
        "Fetch cleaned subtitles as plain text for a video (YouTube, Twitter/X, Instagram, TikTok, "
        "Twitch, Vimeo, Facebook, Bilibili, VK, Dailymotion). With no type and lang, tries official "
        "subtitles, then auto-generated ones, then the speech-to-text fallback when enabled.",
        SubtitleInput,
        TranscriptOutput,
    ),
    _tool(
        "get_raw_subtitles",
        "Get raw subtitles",
        "Fetch raw SRT/VTT subtitles for a video (supported platforms). Optional lang: when omitted "
        "and the speech-to-text fallback is used, language is auto-detected.",
        SubtitleInput,
        RawSubtitlesOutput,
    ),
    _tool(
        "get_available_subtitles",
        "Get available subtitle languages",
        "List official and auto-generated subtitle languages for a video.",
        UrlInput,
        AvailableSubtitlesOutput,
    ),
    _tool(
        "get_video_info",
        "Get video info",
        "Fetch video metadata: title, channel, duration, description, upload date, counts, tags, "
        "live status and thumbnails.",
        UrlInput,
    ),
    _tool(
        "get_video_chapters",
        "Get video chapters",
        "Fetch chapter markers (start time, end time, title) for a video.",
        UrlInput,
    ),
]


def _text(text: str) -> TextContent:
    return TextContent(type="text", text=text)


def tool_error(message: str) -> CallToolResult:
    return CallToolResult(content=[_text(message)], isError=True)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


def jsonrpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    # Built as a dict: parse errors carry a null id, which the typed model rejects
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": ErrorData(code=code, message=message).model_dump(exclude_none=True),
    }


def _result(request_id: Any, result: BaseModel | dict) -> dict[str, Any]:
    payload = result if isinstance(result, dict) else _dump(result)
    return _dump(JSONRPCResponse(jsonrpc="2.0", id=request_id, result=payload))


def _page(text: str, args: SubtitleInput, config: Settings) -> Page:
    return paginate(
        text,
        args.response_limit,
        args.next_cursor,
        default=config.response_limit_default,
        minimum=config.response_limit_min,
        maximum=config.response_limit_max,
    )


def _page_fields(result: TranscriptResult, page: Page) -> dict[str, Any]:
    return {
        "video_id": result.video_id,
        "type": result.type,
        "lang": result.lang,
        "next_cursor": page.next_cursor,
        "is_truncated": page.is_truncated,
        "total_length": page.total_length,
        "start_offset": page.start_offset,
        "end_offset": page.end_offset,
        # Only synthesized transcripts report their source
        "source": "whisper" if result.source == "whisper" else None,
    }


def render_transcript(result: TranscriptResult, args: SubtitleInput, config: Settings) -> TranscriptOutput:
    """Parse a resolved transcript to plain text and return the requested page."""
    page = _page(parse_subtitles(result.content), args, config)
    return TranscriptOutput(text=page.chunk, **_page_fields(result, page))


def render_raw_subtitles(result: TranscriptResult, args: SubtitleInput, config: Settings) -> RawSubtitlesOutput:
    """Return the requested page of the raw SRT/VTT file."""
    page = _page(result.content, args, config)
    return RawSubtitlesOutput(
        format=detect_subtitle_format(result.content),
        content=page.chunk,
        **_page_fields(result, page),
    )


class ToolDispatcher:
    """
    Per-session JSON-RPC handler for the MCP tool surface.

    State moves from uninitialized to active on ``initialize``; the transport
    owns the closed state.
    """

    def __init__(self, resolver: TranscriptResolver, config: Settings):
        self._resolver = resolver
        self._config = config
        self.initialized = False
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] | None = None
        self._handlers: dict[str, ToolHandler] = {
            "get_transcript": self._handle_get_transcript,
            "get_raw_subtitles": self._handle_get_raw_subtitles,
            "get_available_subtitles": self._handle_get_available_subtitles,
            "get_video_info": self._handle_get_video_info,
            "get_video_chapters": self._handle_get_video_chapters,
        }

    def list_tools(self) -> list[Tool]:
        return list(TOOLS)

    # ------------------------------------------------------------------
    # JSON-RPC routing
    # ------------------------------------------------------------------

    async def handle_message(self, message: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """
        Handle one JSON-RPC message or batch.

        Returns:
            The response (or list of responses for a batch), or None when the
            input contained only notifications
        """
        if isinstance(message, list):
            if not message:
                return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request: empty batch")
            responses = [response for item in message if (response := await self._handle_single(item)) is not None]
            return responses or None
        return await self._handle_single(message)

    async def _handle_single(self, message: Any) -> dict[str, Any] | None:
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            return jsonrpc_error(None, INVALID_REQUEST, "Invalid Request")

        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params") or {}

        if not isinstance(method, str):
            # Responses from the client (no method) need no reply
            if "result" in message or "error" in message:
                return None
            return jsonrpc_error(request_id, INVALID_REQUEST, "Invalid Request: missing method")

        is_notification = "id" not in message
        if is_notification:
            self._handle_notification(method)
            return None

        if not isinstance(params, dict):
            return jsonrpc_error(request_id, INVALID_PARAMS, "Invalid params")

        try:
            if method == "initialize":
                return _result(request_id, self._initialize(params))
            if method == "ping":
                return _result(request_id, {})
            if method == "tools/list":
                return _result(request_id, ListToolsResult(tools=self.list_tools()))
            if method == "tools/call":
                name = params.get("name")
                if name not in self._handlers:
                    return jsonrpc_error(request_id, INVALID_PARAMS, f"Unknown tool: {name}")
                arguments = params.get("arguments") or {}
                return _result(request_id, await self.call_tool(name, arguments))
        except Exception:
            logger.exception("jsonrpc_method_failed", method=method)
            return jsonrpc_error(request_id, INTERNAL_ERROR, "Internal error")

        return jsonrpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    def _handle_notification(self, method: str) -> None:
        if method == "notifications/initialized":
            self.initialized = True
        else:
            logger.debug("notification_ignored", method=method)

    def _initialize(self, params: dict[str, Any]) -> InitializeResult:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        self.protocol_version = version
        self.client_info = params.get("clientInfo")
        self.initialized = True
        logger.info("session_initialized", protocol_version=version, client=(self.client_info or {}).get("name"))
        return InitializeResult(
            protocolVersion=version,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(name=SERVER_NAME, version=__version__),
            instructions=SERVER_INSTRUCTIONS,
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """
        Run a tool by name.

        Validation and not-found failures come back as tool results with
        isError set; anything else propagates.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return tool_error(f"Unknown tool: {name}")
        try:
            return await handler(arguments)
        except PydanticValidationError as e:
            errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
            return tool_error(f"Invalid arguments: {errors}")
        except (ValidationError, NotFoundError) as e:
            logger.info("tool_failed", tool=name, error=e.title, message=e.message)
            return tool_error(e.message)
        except SubtitleServiceError as e:
            logger.warning("tool_failed", tool=name, error=e.title, message=e.message)
            return tool_error(e.message)

    async def _resolve(self, args: SubtitleInput) -> TranscriptResult:
        ref = validate_video_reference(args.url)
        return await self._resolver.resolve(ref, args.type, args.lang)

    async def _handle_get_transcript(self, arguments: dict[str, Any]) -> CallToolResult:
        args = SubtitleInput.model_validate(arguments)
        output = render_transcript(await self._resolve(args), args, self._config)
        return CallToolResult(content=[_text(output.text)], structuredContent=_dump(output))

    async def _handle_get_raw_subtitles(self, arguments: dict[str, Any]) -> CallToolResult:
        args = SubtitleInput.model_validate(arguments)
        output = render_raw_subtitles(await self._resolve(args), args, self._config)
        return CallToolResult(content=[_text(output.content)], structuredContent=_dump(output))

    async def _handle_get_available_subtitles(self, arguments: dict[str, Any]) -> CallToolResult:
        args = UrlInput.model_validate(arguments)
        catalog = await self._resolver.get_catalog(validate_video_reference(args.url))
        output = AvailableSubtitlesOutput(video_id=catalog.video_id, official=catalog.official, auto=catalog.auto)
        text = (
            f"Official: {', '.join(catalog.official) if catalog.official else 'none'}\n"
            f"Auto: {', '.join(catalog.auto) if catalog.auto else 'none'}"
        )
        return CallToolResult(content=[_text(text)], structuredContent=_dump(output))

    async def _handle_get_video_info(self, arguments: dict[str, Any]) -> CallToolResult:
        args = UrlInput.model_validate(arguments)
        metadata = await self._resolver.get_video_info(validate_video_reference(args.url))
        structured = {"videoId": metadata.video_id, **metadata.model_dump(mode="json", exclude={"video_id"})}
        return CallToolResult(content=[_text(json.dumps(structured, ensure_ascii=False))], structuredContent=structured)

    async def _handle_get_video_chapters(self, arguments: dict[str, Any]) -> CallToolResult:
        args = UrlInput.model_validate(arguments)
        chapters = await self._resolver.get_video_chapters(validate_video_reference(args.url))
        structured = {
            "videoId": chapters.video_id,
            "chapters": [chapter.model_dump(mode="json") for chapter in chapters.chapters],
        }
        text = "\n".join(f"{c.start_time:g}-{c.end_time:g}: {c.title}" for c in chapters.chapters) or "No chapters"
        return CallToolResult(content=[_text(text)], structuredContent=structured)
