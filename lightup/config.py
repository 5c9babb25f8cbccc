"""
Lightup Configuration

Pydantic-backed configuration loaded from environment variables.
Uses LIGHTUP_ prefix for all environment variables.
"""

import os
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from lightup.errors import ConfigError


class Config(BaseModel):
    """
    Pydantic-backed configuration loaded from environment variables.

    Key env vars:
    - LIGHTUP_DB_PATH (default: kanban.db)
    - LIGHTUP_ENV (default: local)
    - LIGHTUP_API_TOKEN (optional bearer token)
    - LIGHTUP_LOG_LEVEL (default: INFO)
    - LIGHTUP_OPENCODE_URL (default: http://localhost:4096)
    - LIGHTUP_BACKGROUND_TASKS (default: true; disables relay + queue when false)
    """

    # Database
    db_path: Path = Field(default=Path("kanban.db"))

    # Environment
    environment: str = Field(default="local")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=21547)
    api_token: Optional[str] = Field(default=None)
    log_level: str = Field(default="INFO")

    # Agent runtime
    opencode_url: str = Field(default="http://localhost:4096")
    opencode_connect_timeout: float = Field(default=5.0)

    # Background tasks
    background_tasks: bool = Field(default=True)
    queue_interval_seconds: float = Field(default=3.0)
    relay_max_backoff_seconds: float = Field(default=30.0)

    # Questions
    question_timeout_seconds: float = Field(default=30 * 60)
    question_poll_interval_seconds: float = Field(default=2.0)

    # API / web
    cors_allow_origins: List[str] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def auth_enabled(self) -> bool:
        """Check if bearer-token auth is enabled."""
        return bool(self.api_token)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_number(name: str, default: str, kind=float):
    """Read a numeric env var; a malformed value raises ConfigError naming the variable."""
    raw = os.environ.get(name, default)
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid value for {name}: {raw!r}", metadata={"variable": name}) from exc


def _parse_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    if value.strip() == "*":
        return ["*"]
    return [v.strip() for v in value.split(",") if v.strip()]


def load_config() -> Config:
    """
    Load Lightup configuration from environment.

    Environment variables use the LIGHTUP_ prefix.
    """
    env = os.environ.get("LIGHTUP_ENV", "local")
    cors = _parse_csv(os.environ.get("LIGHTUP_CORS_ORIGINS"))
    if not cors:
        cors = ["*"] if env == "local" else ["http://localhost:5173"]
    return Config(
        # Database
        db_path=Path(os.environ.get("LIGHTUP_DB_PATH", "kanban.db")).expanduser(),

        # Environment
        environment=env,
        host=os.environ.get("LIGHTUP_HOST", "127.0.0.1"),
        port=_parse_number("LIGHTUP_PORT", "21547", int),
        api_token=os.environ.get("LIGHTUP_API_TOKEN") or None,
        log_level=os.environ.get("LIGHTUP_LOG_LEVEL", "INFO"),

        # Agent runtime
        opencode_url=os.environ.get("LIGHTUP_OPENCODE_URL", "http://localhost:4096").rstrip("/"),
        opencode_connect_timeout=_parse_number("LIGHTUP_OPENCODE_CONNECT_TIMEOUT", "5.0"),

        # Background tasks
        background_tasks=_parse_bool(os.environ.get("LIGHTUP_BACKGROUND_TASKS"), default=True),
        queue_interval_seconds=_parse_number("LIGHTUP_QUEUE_INTERVAL", "3.0"),
        relay_max_backoff_seconds=_parse_number("LIGHTUP_RELAY_MAX_BACKOFF", "30.0"),

        # Questions
        question_timeout_seconds=_parse_number("LIGHTUP_QUESTION_TIMEOUT", str(30 * 60)),
        question_poll_interval_seconds=_parse_number("LIGHTUP_QUESTION_POLL_INTERVAL", "2.0"),

        # API / web
        cors_allow_origins=cors,
    )


# Singleton config instance (lazy loaded)
_config: Optional[Config] = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def _reset_config_for_tests() -> None:
    """Reset the global config cache (tests only)."""
    global _config
    with _config_lock:
        _config = None
