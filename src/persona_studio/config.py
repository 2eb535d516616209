"""Runtime configuration and logging setup."""

import logging
import os
from pathlib import Path

import structlog
from pydantic import BaseModel

DEFAULT_PROXY_URL = "http://localhost:8000"
DEFAULT_UPSTREAM_URL = "https://openrouter.ai/api/v1"
DEFAULT_STATE_PATH = "~/.persona_studio/state.json"
DEFAULT_STATE_KEY = "ai-persona-studio"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class AppConfig(BaseModel):
    """Process configuration, read from ``PERSONA_STUDIO_*`` environment variables."""

    proxy_url: str = DEFAULT_PROXY_URL
    upstream_url: str = DEFAULT_UPSTREAM_URL
    state_path: Path = Path(DEFAULT_STATE_PATH)
    state_key: str = DEFAULT_STATE_KEY
    log_level: str = "INFO"
    log_json: bool = False
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            proxy_url=os.getenv("PERSONA_STUDIO_PROXY_URL", DEFAULT_PROXY_URL),
            upstream_url=os.getenv("PERSONA_STUDIO_UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
            state_path=Path(os.getenv("PERSONA_STUDIO_STATE_PATH", DEFAULT_STATE_PATH)).expanduser(),
            state_key=os.getenv("PERSONA_STUDIO_STATE_KEY", DEFAULT_STATE_KEY),
            log_level=os.getenv("PERSONA_STUDIO_LOG_LEVEL", "INFO").upper(),
            log_json=_env_flag("PERSONA_STUDIO_LOG_JSON"),
            connect_timeout=float(os.getenv("PERSONA_STUDIO_CONNECT_TIMEOUT", "10")),
        )


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog for console or JSON output."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )
