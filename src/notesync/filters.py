"""Column-predicate builder shared by the local and remote stores.

A :class:`Filter` is an ordered list of ``(column, op, value)`` clauses joined
with AND.  It renders three ways:

- :meth:`Filter.matches` evaluates a row dict in-process,
- :meth:`Filter.to_sql` produces a DuckDB ``WHERE`` fragment plus parameters,
- :meth:`Filter.to_params` produces PostgREST query parameters
  (``column=op.value``).

Usage::

    f = Filter().eq("user_id", uid).gte("updated_at", since)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from notesync.models import parse_instant, to_iso

_SQL_OPS = {
    "eq": "=",
    "neq": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


def _check_column(column: str) -> str:
    if not column.replace("_", "").isalnum():
        raise ValueError(f"Invalid column name: {column!r}")
    return column


@dataclass(frozen=True)
class Clause:
    column: str
    op: str
    value: Any


@dataclass
class Filter:
    clauses: list[Clause] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _add(self, column: str, op: str, value: Any) -> "Filter":
        self.clauses.append(Clause(_check_column(column), op, value))
        return self

    def eq(self, column: str, value: Any) -> "Filter":
        return self._add(column, "eq", value)

    def neq(self, column: str, value: Any) -> "Filter":
        return self._add(column, "neq", value)

    def gt(self, column: str, value: Any) -> "Filter":
        return self._add(column, "gt", value)

    def gte(self, column: str, value: Any) -> "Filter":
        return self._add(column, "gte", value)

    def lt(self, column: str, value: Any) -> "Filter":
        return self._add(column, "lt", value)

    def lte(self, column: str, value: Any) -> "Filter":
        return self._add(column, "lte", value)

    def is_(self, column: str, value: bool | None) -> "Filter":
        """``IS NULL`` / ``IS TRUE`` / ``IS FALSE``."""
        return self._add(column, "is", value)

    def __bool__(self) -> bool:
        return bool(self.clauses)

    # ------------------------------------------------------------------
    # In-process evaluation
    # ------------------------------------------------------------------

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(_match(row.get(c.column), c.op, c.value) for c in self.clauses)

    # ------------------------------------------------------------------
    # DuckDB
    # ------------------------------------------------------------------

    def to_sql(self) -> tuple[str, list[Any]]:
        """Return ``(where_fragment, params)``; the fragment is empty for no clauses."""
        parts: list[str] = []
        params: list[Any] = []
        for c in self.clauses:
            if c.op == "is":
                if c.value is None:
                    parts.append(f"{c.column} IS NULL")
                else:
                    parts.append(f"{c.column} IS {'TRUE' if c.value else 'FALSE'}")
                continue
            if c.value is None:
                parts.append(f"{c.column} IS NULL" if c.op == "eq" else f"{c.column} IS NOT NULL")
                continue
            parts.append(f"{c.column} {_SQL_OPS[c.op]} ?")
            params.append(_sql_value(c.value))
        return " AND ".join(parts), params

    # ------------------------------------------------------------------
    # PostgREST
    # ------------------------------------------------------------------

    def to_params(self) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for c in self.clauses:
            params.append((c.column, f"{c.op}.{_rest_value(c.value)}"))
        return params


def _sql_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _rest_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return to_iso(value)
    return str(value)


def _match(actual: Any, op: str, expected: Any) -> bool:
    if op == "is":
        if expected is None:
            return actual is None
        return actual is not None and bool(actual) is expected
    if actual is None or expected is None:
        if op == "eq":
            return actual is expected
        if op == "neq":
            return actual is not expected
        return False
    if isinstance(expected, datetime):
        actual = parse_instant(actual)
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    raise ValueError(f"Unknown filter operator: {op!r}")
