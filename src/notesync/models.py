"""Entity, queue and status dataclasses plus timestamp helpers."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from notesync.errors import UnknownTableError

NOTES = "notes"
GROUPS = "groups"
SYNC_QUEUE = "sync_queue"
USER_SETTINGS = "user_settings"
SYNC_OPERATIONS = "sync_operations"

#: Collections pushed and pulled by the sync engine, in pull order.
SYNCED_TABLES: tuple[str, ...] = (NOTES, GROUPS)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: datetime | str) -> datetime:
    """Parse *value* into an aware UTC ``datetime``.

    Accepts ``datetime`` objects and ISO 8601 strings, including the trailing
    ``Z`` form sent by PostgREST. Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: datetime | str) -> str:
    """Normalise a timestamp to ``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``.

    Every stored timestamp uses this exact shape so that string order equals
    chronological order.
    """
    return parse_instant(value).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Operation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AppState(str, Enum):
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Group:
    """A user-owned collection of notes."""

    id: str
    name: str
    user_id: str
    color: str = "#14b8a6"
    created_at: str = ""
    updated_at: str = ""
    version: int = 1
    is_deleted: bool = False
    #: Local-only: ``True`` for local writes still waiting to be pushed.
    needs_sync: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Group":
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            user_id=row.get("user_id") or "",
            color=row.get("color") or "#14b8a6",
            created_at=row.get("created_at") or "",
            updated_at=row.get("updated_at") or "",
            version=int(row.get("version") or 1),
            is_deleted=bool(row.get("is_deleted")),
            needs_sync=bool(row.get("needs_sync")),
        )

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    def to_remote(self) -> dict[str, Any]:
        row = self.to_row()
        row.pop("needs_sync")
        return row


@dataclass
class Note:
    """A single note; ``content`` is the structured editor document."""

    id: str
    user_id: str
    title: str = "Untitled"
    content: dict[str, Any] = field(default_factory=dict)
    content_markdown: str = ""
    content_plain: str = ""
    group_id: str | None = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 1
    is_deleted: bool = False
    deleted_at: str | None = None
    needs_sync: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Note":
        content = row.get("content") or {}
        if isinstance(content, str):
            content = json.loads(content) if content else {}
        return cls(
            id=row["id"],
            user_id=row.get("user_id") or "",
            title=row.get("title") or "Untitled",
            content=content,
            content_markdown=row.get("content_markdown") or "",
            content_plain=row.get("content_plain") or "",
            group_id=row.get("group_id"),
            created_at=row.get("created_at") or "",
            updated_at=row.get("updated_at") or "",
            version=int(row.get("version") or 1),
            is_deleted=bool(row.get("is_deleted")),
            deleted_at=row.get("deleted_at"),
            needs_sync=bool(row.get("needs_sync")),
        )

    def to_row(self) -> dict[str, Any]:
        """Local row shape: ``content`` serialised to JSON text."""
        row = asdict(self)
        row["content"] = json.dumps(self.content)
        return row

    def to_remote(self) -> dict[str, Any]:
        """Remote row shape: ``content`` as a JSON object, no local flags."""
        row = asdict(self)
        row.pop("needs_sync")
        return row


ENTITY_TYPES: dict[str, type[Note] | type[Group]] = {NOTES: Note, GROUPS: Group}


def entity_from_row(table: str, row: Mapping[str, Any]) -> Note | Group:
    try:
        return ENTITY_TYPES[table].from_row(row)
    except KeyError:
        raise UnknownTableError(table) from None


def to_local_row(table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a remote row into the local row shape, tagged as synced.

    Server-driven writes never set ``needs_sync`` so they cannot loop back
    into the push queue.
    """
    entity = entity_from_row(table, row)
    for attr in ("created_at", "updated_at", "deleted_at"):
        value = getattr(entity, attr, None)
        if value:
            setattr(entity, attr, to_iso(value))
    entity.needs_sync = False
    return entity.to_row()


# ---------------------------------------------------------------------------
# Queue / events / status
# ---------------------------------------------------------------------------


@dataclass
class QueueItem:
    """One pending push of one entity mutation."""

    id: str
    table_name: str
    record_id: str
    operation: Operation
    data: str  # JSON snapshot of the entity at enqueue time
    user_id: str
    created_at: str
    retry_count: int = 0
    last_error: str | None = None
    #: Insertion sequence; breaks ``created_at`` ties in FIFO order.
    seq: int = 0

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.data)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QueueItem":
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            operation=Operation(row["operation"]),
            data=row["data"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            retry_count=int(row.get("retry_count") or 0),
            last_error=row.get("last_error"),
            seq=int(row.get("seq") or 0),
        )

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["operation"] = self.operation.value
        return row


@dataclass
class ChangeEvent:
    """A row change pushed by the remote realtime feed."""

    event_type: Operation
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, table: str, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Build from the ``{eventType, new, old}`` wire payload."""
        return cls(
            event_type=Operation(payload["eventType"]),
            table=table,
            new=payload.get("new") or None,
            old=payload.get("old") or None,
        )


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot broadcast to status listeners for UI display."""

    is_syncing: bool
    pending_operations: int
    last_sync_time: datetime | None = None
    error: str | None = None
    is_online: bool = False


@dataclass
class SyncResult:
    """Counters for one push/pull cycle."""

    pushed: int = 0
    failed: int = 0
    pulled_notes: int = 0
    pulled_groups: int = 0
    applied: int = 0
    error: str | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped
