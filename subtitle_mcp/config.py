"""
Configuration module for subtitle-mcp.

Uses pydantic-settings to load configuration from environment variables.
This allows runtime tuning of extraction, caching and session behaviour
without code changes.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Note: The env_prefix is set to "SUBTITLE_MCP_" but populate_by_name=True
    allows using field names directly. Fields with an alias are read from the
    unprefixed alias (e.g. HOST, MCP_AUTH_TOKEN, REDIS_URL).

    Environment Variables:
        HOST / PORT / LOG_LEVEL: Server binding and log verbosity
        SUBTITLE_MCP_YTDLP_REQUEST_TIMEOUT: Timeout in seconds for one yt-dlp call (default: 60)
        COOKIES_FILE_PATH: Netscape cookies file handed to yt-dlp
        YT_DLP_PROXY: Proxy URL handed to yt-dlp
        REDIS_URL: Use Redis as the cache backend instead of the in-process cache
        SUBTITLE_MCP_CACHE_TTL_SUBTITLES: TTL for resolved transcripts (default: 7200)
        SUBTITLE_MCP_CACHE_TTL_METADATA: TTL for catalogs and video info (default: 3600)
        MCP_AUTH_TOKEN: Bearer token required on MCP endpoints when set
        MCP_PUBLIC_URL / MCP_PUBLIC_URLS: Externally visible base URL(s) advertised
            to event-stream clients (MCP_PUBLIC_URLS is comma separated)
        MCP_SMITHERY_PUBLIC_URL: Base URL advertised when a request arrives through
            the Smithery gateway
        MCP_SESSION_TTL / MCP_SESSION_CLEANUP_INTERVAL: Session expiry and sweep period (seconds)
        WHISPER_MODE: "off" (default) or "api" to enable the speech-to-text fallback
        WHISPER_BASE_URL / WHISPER_API_KEY / WHISPER_MODEL: Whisper HTTP service
    """

    # ========== Server Configuration ==========

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=4200, alias="PORT")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    # ========== yt-dlp Extraction Settings ==========

    # Sleep between subtitle requests inside yt-dlp; 0 keeps the cascade fast
    ytdlp_sleep_seconds: int = 0

    # Browser to impersonate for TLS fingerprinting (requires curl_cffi), e.g. "chrome"
    ytdlp_impersonate_target: str | None = None

    # Temporary directory for subtitle and audio downloads (auto-cleaned after each call)
    ytdlp_temp_dir: str | None = None

    # Timeout for a single yt-dlp call, also used as the socket timeout
    ytdlp_request_timeout: int = 60

    # Audio for the speech-to-text fallback is a full download, so it gets its own bound
    ytdlp_audio_timeout: int = Field(default=600, alias="YT_DLP_AUDIO_TIMEOUT")
    ytdlp_audio_format: str = Field(default="bestaudio[abr<=192]/bestaudio", alias="YT_DLP_AUDIO_FORMAT")
    ytdlp_audio_quality: int = Field(default=5, ge=0, le=9, alias="YT_DLP_AUDIO_QUALITY")

    ytdlp_cookies_file: str | None = Field(default=None, alias="COOKIES_FILE_PATH")
    ytdlp_proxy: str | None = Field(default=None, alias="YT_DLP_PROXY")

    # ========== Transcript Settings ==========

    # Language used in explicit mode when only the type is given
    default_lang: str = "en"

    response_limit_default: int = 50000
    response_limit_min: int = 1000
    response_limit_max: int = 200000

    # Number of failed resolutions kept for /failures
    failure_log_size: int = 100

    # ========== Security Settings ==========

    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 100
    enable_security_headers: bool = True
    mcp_auth_token: str | None = Field(default=None, alias="MCP_AUTH_TOKEN")

    # ========== Caching Settings ==========

    cache_enabled: bool = True
    cache_maxsize: int = 1000
    cache_ttl_subtitles: int = 7200
    cache_ttl_metadata: int = 3600
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # ========== Session Settings ==========

    session_ttl: int = Field(default=3600, alias="MCP_SESSION_TTL")
    session_cleanup_interval: int = Field(default=900, alias="MCP_SESSION_CLEANUP_INTERVAL")

    mcp_public_url: str | None = Field(default=None, alias="MCP_PUBLIC_URL")
    mcp_public_urls: str | None = Field(default=None, alias="MCP_PUBLIC_URLS")
    smithery_public_url: str | None = Field(default=None, alias="MCP_SMITHERY_PUBLIC_URL")

    # ========== Speech-to-text Fallback ==========

    whisper_mode: Literal["off", "api"] = Field(default="off", alias="WHISPER_MODE")
    whisper_base_url: str = Field(default="https://api.openai.com", alias="WHISPER_BASE_URL")
    whisper_api_key: str | None = Field(default=None, alias="WHISPER_API_KEY")
    whisper_model: str = Field(default="whisper-1", alias="WHISPER_MODEL")
    whisper_timeout: int = 600

    model_config = SettingsConfigDict(
        env_prefix="SUBTITLE_MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,  # Allow using field names or aliases
    )

    @property
    def public_urls(self) -> list[str]:
        """Ordered list of advertised base URLs (MCP_PUBLIC_URLS wins over MCP_PUBLIC_URL)."""
        raw = self.mcp_public_urls or self.mcp_public_url or ""
        return [entry.strip().rstrip("/") for entry in raw.split(",") if entry.strip()]

    @property
    def whisper_enabled(self) -> bool:
        return self.whisper_mode != "off"


# Global settings instance - loaded at startup with environment variables
settings = Settings()
