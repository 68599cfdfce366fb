"""Last-write-wins conflict resolution."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping, TypeVar

from notesync.models import parse_instant

E = TypeVar("E")

Strategy = Literal["local", "remote", "latest"]


def updated_at(entity: Any) -> datetime:
    """Return the ``updated_at`` instant of a row mapping or entity object."""
    value = entity["updated_at"] if isinstance(entity, Mapping) else entity.updated_at
    return parse_instant(value)


def resolve(local: E, remote: E, strategy: Strategy = "latest") -> E:
    """Choose between two versions of the same entity.

    ``local``/``remote`` always pick that side.  ``latest`` picks the version
    with the strictly greater ``updated_at``; equal timestamps resolve to
    *remote*.  The chosen argument is returned as-is.
    """
    if strategy == "local":
        return local
    if strategy == "remote":
        return remote
    if strategy == "latest":
        return local if updated_at(local) > updated_at(remote) else remote
    raise ValueError(f"Unknown conflict strategy: {strategy!r}")
