from __future__ import annotations

from datetime import datetime

import httpx

from shelfmark.client.types import Bookmark
from shelfmark.config import ClientConfig

API_PREFIX = "/api/v1"


class StoreError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def open_client(config=ClientConfig, token: str | None = None) -> httpx.AsyncClient:
    token = token if token is not None else config.API_TOKEN
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=config.BASE_URL,
        headers=headers,
        timeout=config.REQUEST_TIMEOUT,
    )


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def _serialize_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class BookmarkStoreProxy:
    """Owner-scoped access to the remote bookmark table.

    The owner is implied by the credentials carried on ``http``; callers never
    pass it. Every failure surfaces as :class:`StoreError` with the server's
    message.
    """

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self.http.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(_normalize_error(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error:
            message = ""
            if isinstance(payload, dict):
                message = payload.get("error") or ""
            raise StoreError(
                message or f"HTTP {response.status_code}", response.status_code
            )
        return payload if isinstance(payload, dict) else {}

    async def whoami(self) -> int:
        payload = await self._request("GET", "/auth/me")
        return int(payload["user_id"])

    async def list(self) -> list[Bookmark]:
        payload = await self._request("GET", "/bookmarks")
        return [Bookmark.from_dict(item) for item in payload.get("items") or []]

    async def insert(self, title: str, url: str) -> Bookmark:
        payload = await self._request(
            "POST", "/bookmarks", json={"title": title, "url": url}
        )
        return Bookmark.from_dict(payload)

    async def update(self, bookmark_id: int, fields: dict) -> Bookmark:
        body = {key: _serialize_value(value) for key, value in fields.items()}
        payload = await self._request("PATCH", f"/bookmarks/{bookmark_id}", json=body)
        return Bookmark.from_dict(payload)

    async def delete(self, bookmark_id: int) -> None:
        await self._request("DELETE", f"/bookmarks/{bookmark_id}")
