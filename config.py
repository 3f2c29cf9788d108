# config.py
import os
from dataclasses import dataclass
from typing import Optional

# ==== Defaults ====
DEFAULT_SERVER_NAME = "gsc-mcp-server"
DEFAULT_SERVER_VERSION = "1.0.0"
DEFAULT_SERVER_DESCRIPTION = "Google Search Console MCP Server"
DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_KEEPALIVE_SECONDS = 30.0


def _get_int_env(name: str, default_value: int) -> int:
    try:
        return int(os.getenv(name, str(default_value)))
    except Exception:
        return default_value


def _get_float_env(name: str, default_value: float) -> float:
    try:
        return float(os.getenv(name, str(default_value)))
    except Exception:
        return default_value


def _first_env(*names: str) -> Optional[str]:
    # Accept either the plain or the *_TEAM names for convenience
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    server_name: str = DEFAULT_SERVER_NAME
    server_version: str = DEFAULT_SERVER_VERSION
    server_description: str = DEFAULT_SERVER_DESCRIPTION
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS

    # Shared secret for the X-API-Key header. None disables the check.
    api_key: Optional[str] = None

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_store_path: Optional[str] = None

    http_timeout_seconds: int = 180
    request_retries: int = 3
    retry_backoff_seconds: float = 2.0
    retry_jitter_ms: int = 300

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            server_name=os.getenv("MCP_SERVER_NAME", DEFAULT_SERVER_NAME),
            server_version=os.getenv("MCP_SERVER_VERSION", DEFAULT_SERVER_VERSION),
            server_description=os.getenv("MCP_SERVER_DESCRIPTION", DEFAULT_SERVER_DESCRIPTION),
            protocol_version=os.getenv("MCP_PROTOCOL_VERSION", DEFAULT_PROTOCOL_VERSION),
            keepalive_seconds=_get_float_env("MCP_KEEPALIVE_SECONDS", DEFAULT_KEEPALIVE_SECONDS),
            api_key=os.getenv("API_KEY") or None,
            client_id=_first_env("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID_TEAM"),
            client_secret=_first_env("GOOGLE_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET_TEAM"),
            access_token=os.getenv("GOOGLE_ACCESS_TOKEN") or None,
            refresh_token=os.getenv("GOOGLE_REFRESH_TOKEN") or None,
            token_store_path=os.getenv("GSC_TOKEN_STORE_PATH") or None,
            http_timeout_seconds=_get_int_env("GSC_HTTP_TIMEOUT_SECONDS", 180),
            request_retries=_get_int_env("GSC_REQUEST_RETRIES", 3),
            retry_backoff_seconds=_get_float_env("GSC_RETRY_BACKOFF_SECONDS", 2.0),
            retry_jitter_ms=_get_int_env("GSC_RETRY_JITTER_MS", 300),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_get_int_env("PORT", 8000),
        )
