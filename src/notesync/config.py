"""Runtime configuration for the sync services.

Configuration is a flat TOML table::

    [notesync]
    db_path       = "~/.local/share/notesync/notes.duckdb"
    remote_url    = "https://project.example.co"
    api_key       = "anon-key"
    sync_interval = 30

Environment variables (all optional; direct kwargs take precedence):
    NOTESYNC_DB_PATH       – DuckDB database file (default ``:memory:``)
    NOTESYNC_REMOTE_URL    – base URL of the PostgREST endpoint
    NOTESYNC_API_KEY       – project API key sent as ``apikey``
    NOTESYNC_ACCESS_TOKEN  – user session token sent as ``Bearer``
    NOTESYNC_LOG_LEVEL     – loguru level name (default ``INFO``)
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from notesync.errors import ConfigError

MAX_RETRIES = 5
BATCH_SIZE = 50
SYNC_INTERVAL = 30.0
CLEANUP_INTERVAL = 24 * 60 * 60.0
DELETED_RETENTION_DAYS = 30
QUEUE_RETENTION_DAYS = 7
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0
REQUEST_TIMEOUT = 10.0

_ENV = {
    "db_path": "NOTESYNC_DB_PATH",
    "remote_url": "NOTESYNC_REMOTE_URL",
    "api_key": "NOTESYNC_API_KEY",
    "access_token": "NOTESYNC_ACCESS_TOKEN",
    "log_level": "NOTESYNC_LOG_LEVEL",
}


@dataclass
class SyncConfig:
    db_path: str = ":memory:"
    remote_url: str = ""
    api_key: str = ""
    access_token: str = ""
    request_timeout: float = REQUEST_TIMEOUT
    sync_interval: float = SYNC_INTERVAL
    batch_size: int = BATCH_SIZE
    max_retries: int = MAX_RETRIES
    cleanup_interval: float = CLEANUP_INTERVAL
    deleted_retention_days: int = DELETED_RETENTION_DAYS
    queue_retention_days: int = QUEUE_RETENTION_DAYS
    retry_base_delay: float = RETRY_BASE_DELAY
    retry_max_delay: float = RETRY_MAX_DELAY
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.sync_interval <= 0 or self.cleanup_interval <= 0:
            raise ConfigError("intervals must be positive")
        if self.retry_base_delay <= 0 or self.retry_max_delay < self.retry_base_delay:
            raise ConfigError("retry delays must satisfy 0 < base <= max")

    @property
    def has_remote(self) -> bool:
        return bool(self.remote_url)

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncConfig":
        """Build from ``NOTESYNC_*`` environment variables; *overrides* win."""
        values: dict[str, Any] = {}
        for name, var in _ENV.items():
            if os.getenv(var):
                values[name] = os.environ[var]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        section = data.get("notesync", data)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        if "db_path" in section and section["db_path"] != ":memory:":
            section = {**section, "db_path": str(Path(section["db_path"]).expanduser())}
        return cls(**section)

    @classmethod
    def from_toml(cls, path: Path | str) -> "SyncConfig":
        """Load a ``[notesync]`` table from a TOML file."""
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(f"Cannot read config {path}: {exc}") from exc
        return cls.from_dict(data)
