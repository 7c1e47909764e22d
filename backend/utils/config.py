"""
LiveMorph Configuration Module.

Centralizes all configuration settings using Pydantic Settings.
Requires Python 3.11+.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into os.environ at module import time
# This ensures nested BaseSettings classes can read the values
load_dotenv()

CONFIG_FILENAME = "livemorph.config.json"

DEFAULT_ACTIONS: dict[str, str] = {
    "**/*.php": "morph-html",
    "**/*.html": "morph-html",
    "**/*.css": "reload-css",
    "**/*.js": "reload-page",
}

DEFAULT_FRAGMENTS: dict[str, str] = {
    "main": "#main",
    "content": "#content",
    "header": "header",
    "footer": "footer",
}


def _split_csv(v: str | list[str]) -> list[str]:
    if isinstance(v, str):
        return [p.strip() for p in v.split(",") if p.strip()]
    return v


class ServerSettings(BaseSettings):
    """HTTP server and streaming endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="LIVEMORPH_SERVER_")

    host: str = Field(default="localhost", description="Hostname advertised to clients")
    port: int = Field(default=4321, ge=1, le=65535)
    https: bool = Field(default=False)
    ssl_certfile: Path | None = Field(default=None)
    ssl_keyfile: Path | None = Field(default=None)
    events_path: str = Field(default="/events")
    keepalive_seconds: float = Field(default=15.0, gt=0)
    cors_origins: list[str] = Field(default=["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string or list."""
        return _split_csv(v)


class WatchSettings(BaseSettings):
    """File watcher configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LIVEMORPH_WATCH_")

    root: Path = Field(default_factory=Path.cwd)
    paths: list[str] = Field(
        default=["**/*.php", "**/*.html", "**/*.css", "**/*.js"],
        description="Glob patterns a changed file must match",
    )
    ignore: list[str] = Field(
        default=["node_modules/**", ".git/**"],
        description="Glob patterns that exclude a changed file",
    )
    debounce_delay_ms: int = Field(default=100, ge=0, le=5000)
    enabled: bool = Field(default=True)

    @field_validator("paths", "ignore", mode="before")
    @classmethod
    def parse_patterns(cls, v: str | list[str]) -> list[str]:
        """Parse glob patterns from comma-separated string or list."""
        return _split_csv(v)


class StaticSettings(BaseSettings):
    """Static file serving settings."""

    model_config = SettingsConfigDict(env_prefix="LIVEMORPH_STATIC_")

    root: Path | None = Field(default=None, description="Defaults to the watch root")
    index_file: str = Field(default="index.html")
    inject_client: bool = Field(default=True)
    idiomorph_url: str | None = Field(
        default=None,
        description="Idiomorph script injected before the client; without it morph-html reloads",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LIVEMORPH_LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="console")  # "json" or "console"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application metadata
    app_name: str = Field(default="LiveMorph")
    app_version: str = Field(default="0.1.0")

    # Sub-settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    static: StaticSettings = Field(default_factory=StaticSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Ordered pattern -> action mapping; first match wins
    actions: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    # Fragment name -> CSS selector eligible for morphing
    fragments: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_FRAGMENTS))

    @field_validator("actions")
    @classmethod
    def validate_actions(cls, v: dict[str, str]) -> dict[str, str]:
        """Reject actions the client cannot perform."""
        from watcher.matcher import ActionKind

        allowed = {kind.value for kind in ActionKind}
        for pattern, action in v.items():
            if action not in allowed:
                raise ValueError(f"Unknown action {action!r} for pattern {pattern!r}")
        return v

    @property
    def static_root(self) -> Path:
        """Directory static files are served from."""
        return self.static.root or self.watch.root

    def client_config(self) -> dict[str, Any]:
        """Configuration advertised to browsers in the ``connected`` event."""
        return {
            "host": self.server.host,
            "port": self.server.port,
            "https": self.server.https,
            "fragments": dict(self.fragments),
        }


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge with nested dicts merged key-wise, defaults first."""
    merged = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _normalize(file_config: dict[str, Any], root: Path) -> dict[str, Any]:
    """Accept top-level host/port/https and resolve relative directories."""
    config = dict(file_config)
    server = dict(config.get("server") or {})
    for key in ("host", "port", "https"):
        if key in config:
            server.setdefault(key, config.pop(key))
    if server:
        config["server"] = server

    for section in ("watch", "static"):
        values = config.get(section)
        if isinstance(values, dict) and values.get("root") is not None:
            config[section] = {**values, "root": root / Path(values["root"])}
    return config


def _defaults(root: Path) -> dict[str, Any]:
    return {
        "watch": {"root": root},
        "actions": dict(DEFAULT_ACTIONS),
        "fragments": dict(DEFAULT_FRAGMENTS),
    }


def load_config(root: Path | None = None, config_path: Path | None = None) -> Settings:
    """
    Load settings for a project directory.

    Reads ``livemorph.config.json`` (or ``config_path``) and merges it over
    the built-in defaults. Any failure falls back to the defaults.

    Args:
        root: Project directory to watch and serve (defaults to cwd)
        config_path: Explicit config file location

    Returns:
        Immutable Settings snapshot
    """
    from utils.logger import get_logger

    log = get_logger("config")
    root = (root or Path.cwd()).resolve()
    path = config_path or root / CONFIG_FILENAME
    defaults = _defaults(root)

    if not path.is_file():
        log.info("config_not_found_using_defaults", path=str(path))
        return Settings(**defaults)

    try:
        file_config = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(file_config, dict):
            raise ValueError("top-level value must be an object")
        settings = Settings(**_merge(defaults, _normalize(file_config, root)))
    except (OSError, ValueError, ValidationError) as e:
        log.warning("config_invalid_using_defaults", path=str(path), error=str(e))
        return Settings(**defaults)

    log.info("config_loaded", path=str(path))
    return settings


_settings_override: Settings | None = None


def set_settings(settings: Settings | None) -> None:
    """Install the settings snapshot returned by get_settings()."""
    global _settings_override
    _settings_override = settings
    get_settings.cache_clear()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns the snapshot installed at startup, or defaults from the
    environment when none was installed.
    """
    if _settings_override is not None:
        return _settings_override
    return Settings()
