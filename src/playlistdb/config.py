"""Configuration management for playlistdb."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from playlistdb.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".playlistdb"
_CONFIG_FILE = "config.toml"
_DB_FILE = "playlistdb.db"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all playlistdb runtime files (~/.playlistdb/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Where the SQLite store lives."""

    path: str = Field(default="", description="Database file; empty means ~/.playlistdb/playlistdb.db")


class IngestConfig(BaseModel):
    """Settings that control ingestion runs."""

    batch_size: int = Field(default=100, ge=1, description="Records per upsert transaction")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per batch before giving up")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="Backoff before the first retry")


class ApiConfig(BaseModel):
    """Settings for the HTTP query API."""

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, description="Bind port")


class LoggingConfig(BaseModel):
    level: str = Field(default="info", description="Logging level")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def db_path(self) -> Path:
        if self.database.path:
            return Path(self.database.path).expanduser()
        return self.base_dir / _DB_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        return AppConfig.model_validate(raw)
    except (tomllib.TOMLDecodeError, PydanticValidationError) as exc:
        msg = f"Invalid configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _sections(config: AppConfig) -> list[tuple[str, BaseModel]]:
    return [
        ("database", config.database),
        ("ingest", config.ingest),
        ("api", config.api),
        ("logging", config.logging),
    ]


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar values).
    """
    lines: list[str] = []
    for section_name, section_model in _sections(config):
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
