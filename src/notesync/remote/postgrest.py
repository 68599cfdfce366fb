"""PostgREST remote store.

A thin async HTTP client for a PostgREST endpoint (the REST layer of a hosted
Postgres backend).  Each synced collection is a table under ``/rest/v1``.

Routes
------
POST    /rest/v1/{table}                  – insert a row
PATCH   /rest/v1/{table}?id=eq.{id}       – patch a row by id
GET     /rest/v1/{table}?select=*&{f}     – select rows matching filter ``f``
DELETE  /rest/v1/{table}?{f}              – hard-delete rows matching ``f``
HEAD    /rest/v1/{table}?{f}              – count rows (``Prefer: count=exact``)

Filters use PostgREST operator syntax (``user_id=eq.abc``,
``updated_at=gte.2024-01-01T00:00:00.000000+00:00``).  Callers authenticate
with the project ``apikey`` header plus a user ``Authorization: Bearer``
token.  All requests carry an explicit timeout.
"""

from __future__ import annotations

from typing import Any

import httpx

from notesync.config import REQUEST_TIMEOUT
from notesync.errors import RemoteConnectionError, RemoteResponseError
from notesync.filters import Filter


def _parse_content_range(value: str | None) -> int:
    """``0-24/25`` or ``*/25`` -> ``25``."""
    if not value or "/" not in value:
        return 0
    total = value.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class PostgrestTable:
    def __init__(self, store: "PostgrestRemoteStore", name: str) -> None:
        self._store = store
        self.name = name
        self._path = f"/rest/v1/{name}"

    async def insert(self, row: dict[str, Any]) -> None:
        await self._store._request(
            "POST", self._path, json=row, headers={"Prefer": "return=minimal"}
        )

    async def update(self, id: str, patch: dict[str, Any]) -> None:
        await self._store._request(
            "PATCH",
            self._path,
            params=Filter().eq("id", id).to_params(),
            json=patch,
            headers={"Prefer": "return=minimal"},
        )

    async def select(self, filter: Filter | None = None) -> list[dict[str, Any]]:
        params = [("select", "*")] + (filter.to_params() if filter else [])
        response = await self._store._request("GET", self._path, params=params)
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteResponseError(response.status_code, "invalid JSON body") from exc
        if not isinstance(data, list):
            raise RemoteResponseError(response.status_code, "expected a JSON array", data)
        return data

    async def delete(self, filter: Filter) -> int:
        if not filter:
            raise ValueError("refusing to delete without a filter")
        response = await self._store._request(
            "DELETE",
            self._path,
            params=filter.to_params(),
            headers={"Prefer": "return=minimal,count=exact"},
        )
        return _parse_content_range(response.headers.get("Content-Range"))

    async def count(self, filter: Filter | None = None) -> int:
        response = await self._store._request(
            "HEAD",
            self._path,
            params=[("select", "*")] + (filter.to_params() if filter else []),
            headers={"Prefer": "count=exact"},
        )
        return _parse_content_range(response.headers.get("Content-Range"))


class PostgrestRemoteStore:
    """Remote table store backed by a PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        access_token: str = "",
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        self.set_access_token(access_token or api_key)

    def set_access_token(self, token: str) -> None:
        """Switch the bearer token (e.g. after sign-in or refresh)."""
        self._client.headers["Authorization"] = f"Bearer {token}"

    def table(self, name: str) -> PostgrestTable:
        return PostgrestTable(self, name)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise RemoteConnectionError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            try:
                body: Any = response.json()
                message = body.get("message", response.text) if isinstance(body, dict) else response.text
            except ValueError:
                body, message = None, response.text
            raise RemoteResponseError(response.status_code, message or response.reason_phrase, body)
        return response

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PostgrestRemoteStore":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
