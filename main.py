"""
Entry point for subtitle-mcp.

Run this file directly to start the FastAPI server:
    python main.py
    python -m main

Or use uvicorn directly:
    uvicorn subtitle_mcp.main:app --reload --host 0.0.0.0 --port 4200
"""

import uvicorn

from subtitle_mcp.config import settings


def main() -> None:
    """
    Start the uvicorn server.

    Server configuration can be overridden via environment variables:
    - HOST: Server host (default: 0.0.0.0)
    - PORT: Server port (default: 4200)
    - LOG_LEVEL: uvicorn and application log level (default: info)
    - WHISPER_MODE: "api" enables the speech-to-text fallback
    """
    print("=" * 60)
    print("subtitle-mcp")
    print("=" * 60)
    print(f"Starting server on http://{settings.host}:{settings.port}")
    print(f"  - MCP (streamable): POST /mcp")
    print(f"  - MCP (event stream): GET /sse, POST /message")
    print(f"  - REST: /api/v1/subtitles, /api/v1/video/info")
    print("=" * 60)

    uvicorn.run(
        "subtitle_mcp.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
