"""Exception hierarchy for notesync."""

from __future__ import annotations

from typing import Any


class NotesyncError(Exception):
    """Base exception for notesync errors."""


class ConfigError(NotesyncError):
    """Raised for invalid or incomplete configuration."""


class StoreError(NotesyncError):
    """Raised when the local store fails to read or write."""


class NotFoundError(NotesyncError):
    """Raised when an entity addressed by id does not exist."""


class UnknownTableError(NotesyncError):
    """Raised for a table name outside the synced collections."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Unknown table: {table}")
        self.table = table


class SyncError(NotesyncError):
    """Raised for cycle-level sync failures (pull, watermark, session)."""


class RemoteError(NotesyncError):
    """Base exception for remote store failures."""


class RemoteConnectionError(RemoteError):
    """Raised for network or connection issues talking to the remote store."""


class RemoteResponseError(RemoteError):
    """Raised for non-2xx responses or unparseable bodies."""

    def __init__(self, status_code: int, message: str, response_data: Any = None) -> None:
        super().__init__(f"Remote error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data
