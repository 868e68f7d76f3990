from __future__ import annotations

import copy
from typing import Any

import pytest

from vote_relay.core.retry import RetryPolicy

VOTE_DATABASE_ID = "votes-db"
KEY_DATABASE_ID = "keys-db"


def rich_text(content: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": content}, "plain_text": content}]


class FakeNotion:
    """Stands in for NotionClient; stores pages in memory and records every call."""

    def __init__(self, databases: dict[str, dict[str, Any]], pages: dict[str, dict[str, Any]]) -> None:
        self.databases = databases
        self.pages = pages
        self.calls: list[tuple[str, str]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self._failures: dict[tuple[str, str], list[Exception]] = {}

    def fail_next(self, method: str, target: str, *errors: Exception) -> None:
        self._failures.setdefault((method, target), []).extend(errors)

    async def retrieve_database(self, database_id: str) -> dict[str, Any]:
        self._enter("retrieve_database", database_id)
        return {"object": "database", "id": database_id, "properties": copy.deepcopy(self.databases[database_id])}

    async def query_database(
        self,
        database_id: str,
        *,
        filter: dict[str, Any] | None = None,
        start_cursor: str | None = None,
    ) -> dict[str, Any]:
        self._enter("query_database", database_id)
        results = [
            copy.deepcopy(page)
            for page in self.pages.values()
            if page.get("parent") == database_id and _matches(page, filter)
        ]
        return {"results": results, "has_more": False, "next_cursor": None}

    async def retrieve_page(self, page_id: str) -> dict[str, Any]:
        self._enter("retrieve_page", page_id)
        return copy.deepcopy(self.pages[page_id])

    async def update_page(self, page_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        self._enter("update_page", page_id)
        self.updates.append((page_id, copy.deepcopy(properties)))
        page = self.pages[page_id]
        for name, update in properties.items():
            kind, value = next(iter(update.items()))
            if kind in {"title", "rich_text"}:
                value = [rich_text(item["text"]["content"])[0] for item in value]
            page["properties"][name] = {"type": kind, kind: value}
        return copy.deepcopy(page)

    async def close(self) -> None:
        return None

    def _enter(self, method: str, target: str) -> None:
        self.calls.append((method, target))
        queued = self._failures.get((method, target))
        if queued:
            raise queued.pop(0)


def _matches(page: dict[str, Any], page_filter: dict[str, Any] | None) -> bool:
    if not page_filter:
        return True
    value = page["properties"].get(page_filter["property"])
    if value is None:
        return False
    kind = value["type"]
    expected = page_filter[kind]["equals"]
    if kind in {"title", "rich_text"}:
        return "".join(item["plain_text"] for item in value[kind]) == expected
    if kind in {"select", "status"}:
        return (value[kind] or {}).get("name") == expected
    return value[kind] == expected


def build_fake_notion() -> FakeNotion:
    databases = {
        VOTE_DATABASE_ID: {
            "Name": {"id": "title", "type": "title", "title": {}},
            "Category": {"id": "c", "type": "select", "select": {"options": []}},
            "Votes": {"id": "v", "type": "number", "number": {}},
        },
        KEY_DATABASE_ID: {
            "投票密码": {"id": "title", "type": "title", "title": {}},
            "是否已经使用？": {"id": "u", "type": "checkbox", "checkbox": {}},
            "投票结果": {"id": "r", "type": "rich_text", "rich_text": {}},
        },
    }
    pages: dict[str, dict[str, Any]] = {}
    for page_id, title, votes in (("a", "Alpha", 0), ("b", "Beta", 5), ("c", "Gamma", 1)):
        pages[page_id] = {
            "object": "page",
            "id": page_id,
            "parent": VOTE_DATABASE_ID,
            "properties": {
                "Name": {"type": "title", "title": rich_text(title)},
                "Votes": {"type": "number", "number": votes},
            },
        }
    for page_id, key, used in (("k1", "open-sesame", False), ("k2", "spent-key", True)):
        pages[page_id] = {
            "object": "page",
            "id": page_id,
            "parent": KEY_DATABASE_ID,
            "properties": {
                "投票密码": {"type": "title", "title": rich_text(key)},
                "是否已经使用？": {"type": "checkbox", "checkbox": used},
                "投票结果": {"type": "rich_text", "rich_text": []},
            },
        }
    return FakeNotion(databases, pages)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_notion() -> FakeNotion:
    return build_fake_notion()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleep_recorder: SleepRecorder) -> RetryPolicy:
    return RetryPolicy(sleep=sleep_recorder)
