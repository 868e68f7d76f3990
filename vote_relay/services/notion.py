from __future__ import annotations

import math
from functools import lru_cache
from typing import Any

import httpx

from vote_relay.core.config import get_settings
from vote_relay.core.retry import RetryPolicy, with_retry


class NotionAPIError(Exception):
    """Raised for any failed Notion request; ``status`` is None for transport errors."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.retry_after = retry_after


class NotionClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://api.notion.com/v1",
        notion_version: str = "2022-06-28",
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_key or ''}",
            "Notion-Version": notion_version,
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def retrieve_database(self, database_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/databases/{database_id}")

    async def query_database(
        self,
        database_id: str,
        *,
        filter: dict[str, Any] | None = None,
        start_cursor: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if filter:
            body["filter"] = filter
        if start_cursor:
            body["start_cursor"] = start_cursor
        return await self._request("POST", f"/databases/{database_id}/query", json=body)

    async def retrieve_page(self, page_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/pages/{page_id}")

    async def update_page(self, page_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/pages/{page_id}", json={"properties": properties})

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", json=json, headers=self.headers)
        except httpx.HTTPError as exc:
            raise NotionAPIError(f"Notion request failed: {exc}") from exc

        if response.is_success:
            return response.json()
        raise _error_from_response(response)


async def query_all_pages(
    client: NotionClient,
    database_id: str,
    *,
    filter: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    pages: list[dict[str, Any]] = []
    cursor: str | None = None
    while True:
        response = await with_retry(
            lambda: client.query_database(database_id, filter=filter, start_cursor=cursor),
            policy=retry_policy,
        )
        pages.extend(response.get("results") or [])
        cursor = response.get("next_cursor") if response.get("has_more") else None
        if not cursor:
            return pages


def _error_from_response(response: httpx.Response) -> NotionAPIError:
    code: str | None = None
    message = f"Notion request failed with status {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        code = payload.get("code") if isinstance(payload.get("code"), str) else None
        if isinstance(payload.get("message"), str) and payload["message"]:
            message = payload["message"]

    return NotionAPIError(
        message,
        status=response.status_code,
        code=code,
        retry_after=_parse_retry_after(response.headers.get("retry-after")),
    )


def _parse_retry_after(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) and seconds > 0 else None


@lru_cache
def get_notion_client() -> NotionClient:
    settings = get_settings()
    return NotionClient(
        settings.notion_api_key,
        base_url=settings.notion_base_url,
        notion_version=settings.notion_version,
        timeout_seconds=settings.notion_timeout_seconds,
    )
