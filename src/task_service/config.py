"""Service settings.

Values resolve, strongest first, from CLI options, `TASK_SERVICE_*` environment
variables, the TOML file at `get_config_path()`, then the defaults below.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_path() -> Path:
    """Location of the TOML config file.

    Returns:
        Path honouring XDG_CONFIG_HOME (or APPDATA on Windows):
        - Linux/macOS: ~/.config/task-service/config.toml
        - Windows: %APPDATA%/task-service/config.toml
    """
    if os.name == "nt":  # Windows
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:  # Linux/macOS
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "task-service" / "config.toml"


class StaticToken(BaseModel):
    """A bearer token accepted in static auth mode."""

    subject: str = Field(..., min_length=1, description="Principal the token authenticates")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")
    user_id: int | None = Field(default=None, description="Linked user record, if any")


class SeedUser(BaseModel):
    """A user record provisioned at startup."""

    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class Settings(BaseSettings):
    """Runtime settings for the API, auth, rate limiting and webhooks.

    Each field reads `TASK_SERVICE_<FIELD>` from the environment, e.g.
    `TASK_SERVICE_HTTP_PORT=9000` or `TASK_SERVICE_STATIC_TOKENS='{...}'` (JSON).
    """

    model_config = SettingsConfigDict(
        env_prefix="TASK_SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP server
    http_host: str = Field(default="127.0.0.1", description="HTTP server bind address")
    http_port: int = Field(default=8080, ge=1, le=65535, description="HTTP server port")

    # Authentication
    auth_mode: Literal["static", "introspection"] = Field(
        default="static",
        description="Token validation strategy",
    )
    introspection_url: str | None = Field(
        default=None,
        description="RFC 7662 token introspection endpoint of the OAuth issuer",
    )
    introspection_client_id: str | None = Field(default=None, description="Introspection client id")
    introspection_client_secret: SecretStr | None = Field(
        default=None,
        description="Introspection client secret",
    )
    introspection_timeout_seconds: float = Field(default=5.0, gt=0, description="Issuer request timeout")
    introspection_cache_seconds: int = Field(
        default=30,
        ge=0,
        description="How long an introspection result is reused (0 disables caching)",
    )
    static_tokens: dict[str, StaticToken] = Field(
        default_factory=dict,
        description="Token table used in static auth mode",
    )

    # Rate limiting
    rate_limit_requests: int = Field(default=1000, ge=1, description="Requests admitted per window per token")
    rate_limit_window_seconds: int = Field(default=3600, ge=1, description="Fixed window length")

    # Pagination
    page_default_limit: int = Field(default=20, ge=1, le=100, description="Default page size")
    page_max_limit: int = Field(default=100, ge=1, le=100, description="Maximum page size")

    # Webhooks
    webhook_workers: int = Field(default=4, ge=1, description="Concurrent delivery workers")
    webhook_queue_size: int = Field(default=10000, ge=1, description="Max pending deliveries")
    webhook_timeout_seconds: float = Field(default=10.0, gt=0, description="Delivery request timeout")
    webhook_max_retries: int = Field(default=5, ge=0, description="Retries after the first attempt")
    webhook_retry_base_delay: float = Field(default=1.0, ge=0, description="First backoff delay in seconds")
    webhook_retry_max_delay: float = Field(default=60.0, ge=0, description="Backoff ceiling in seconds")
    dead_letter_path: str = Field(
        default="~/.local/share/task-service/dead_letters.db",
        description="SQLite file recording deliveries that exhausted their retries",
    )

    # Users provisioned at startup
    seed_users: list[SeedUser] = Field(default_factory=list, description="Users loaded on startup")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level",
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Renderer for stdout/stderr output",
    )
    log_file: str | None = Field(default=None, description="Also write JSON logs to this file")

    @model_validator(mode="after")
    def _check_page_limits(self) -> "Settings":
        if self.page_default_limit > self.page_max_limit:
            raise ValueError("page_default_limit must not exceed page_max_limit")
        return self


def load_toml_config(path: Path | None = None) -> dict[str, Any]:
    """Read the TOML config file; a missing file is an empty config."""
    config_path = path or get_config_path()
    if config_path.exists():
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    return {}


_SECTION_KEYS: dict[str, dict[str, str]] = {
    "server": {
        "host": "http_host",
        "port": "http_port",
        "log_level": "log_level",
        "log_format": "log_format",
        "log_file": "log_file",
    },
    "auth": {
        "mode": "auth_mode",
        "introspection_url": "introspection_url",
        "client_id": "introspection_client_id",
        "client_secret": "introspection_client_secret",
        "timeout_seconds": "introspection_timeout_seconds",
        "cache_seconds": "introspection_cache_seconds",
        "tokens": "static_tokens",
    },
    "rate_limit": {
        "requests": "rate_limit_requests",
        "window_seconds": "rate_limit_window_seconds",
    },
    "pagination": {
        "default_limit": "page_default_limit",
        "max_limit": "page_max_limit",
    },
    "webhooks": {
        "workers": "webhook_workers",
        "queue_size": "webhook_queue_size",
        "timeout_seconds": "webhook_timeout_seconds",
        "max_retries": "webhook_max_retries",
        "retry_base_delay": "webhook_retry_base_delay",
        "retry_max_delay": "webhook_retry_max_delay",
        "dead_letter_path": "dead_letter_path",
    },
}


def flatten_toml_config(toml_config: dict[str, Any]) -> dict[str, Any]:
    """Map `[section] key` entries onto Settings field names.

    Unknown sections and keys are ignored; `[[users]]` becomes `seed_users`.
    """
    overrides: dict[str, Any] = {}

    for section, keys in _SECTION_KEYS.items():
        values = toml_config.get(section)
        if not isinstance(values, dict):
            continue
        for key, setting in keys.items():
            if key in values:
                overrides[setting] = values[key]

    # [[users]] array of tables
    if "users" in toml_config:
        overrides["seed_users"] = toml_config["users"]

    return overrides


def load_settings_with_toml(config_path: Path | None = None) -> Settings:
    """Settings from the TOML file, with the environment taking precedence.

    Args:
        config_path: Config file to read instead of `get_config_path()`
    """
    toml_config = load_toml_config(config_path)
    overrides = flatten_toml_config(toml_config)

    # Init kwargs outrank the environment in pydantic-settings; drop any
    # TOML value the environment already provides.
    for name in list(overrides):
        if f"TASK_SERVICE_{name}".upper() in {k.upper() for k in os.environ}:
            del overrides[name]

    return Settings(**overrides)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings from the environment only."""
    return Settings()
