#!/usr/bin/env python3
"""Serve an in-memory vote database and key database on the Notion endpoints the relay uses."""

from __future__ import annotations

import argparse
import copy
import json
import re
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

VOTE_DATABASE_ID = "vote-db"
KEY_DATABASE_ID = "key-db"

_DATABASE_PATH_RE = re.compile(r"^/v1/databases/([^/]+)$")
_QUERY_PATH_RE = re.compile(r"^/v1/databases/([^/]+)/query$")
_PAGE_PATH_RE = re.compile(r"^/v1/pages/([^/]+)$")


def _rich_text(content: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": content}, "plain_text": content}]


def build_fixture() -> dict[str, Any]:
    databases = {
        VOTE_DATABASE_ID: {
            "名称": {"type": "title", "title": {}},
            "分类": {"type": "select", "select": {"options": [{"name": "手机"}, {"name": "耳机"}]}},
            "得票": {"type": "number", "number": {}},
        },
        KEY_DATABASE_ID: {
            "投票密码": {"type": "title", "title": {}},
            "是否已经使用？": {"type": "checkbox", "checkbox": {}},
            "投票结果": {"type": "rich_text", "rich_text": {}},
        },
    }
    pages: dict[str, dict[str, Any]] = {}
    for index, (title, category) in enumerate([("Alpha", "手机"), ("Beta", "手机"), ("Gamma", "耳机")], start=1):
        pages[f"item-{index}"] = {
            "id": f"item-{index}",
            "parent": VOTE_DATABASE_ID,
            "cover": None,
            "properties": {
                "名称": {"type": "title", "title": _rich_text(title)},
                "分类": {"type": "select", "select": {"name": category}},
                "得票": {"type": "number", "number": 0},
            },
        }
    for index, key in enumerate(["alpha-key", "beta-key", "gamma-key"], start=1):
        pages[f"key-{index}"] = {
            "id": f"key-{index}",
            "parent": KEY_DATABASE_ID,
            "properties": {
                "投票密码": {"type": "title", "title": _rich_text(key)},
                "是否已经使用？": {"type": "checkbox", "checkbox": False},
                "投票结果": {"type": "rich_text", "rich_text": []},
            },
        }
    return {"databases": databases, "pages": pages}


class MockNotionHandler(BaseHTTPRequestHandler):
    server_version = "MockNotion/1.0"
    state: dict[str, Any] = build_fixture()

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        if self.path == "/healthz":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return

        database_match = _DATABASE_PATH_RE.match(self.path)
        if database_match:
            properties = self.state["databases"].get(database_match.group(1))
            if properties is None:
                self._write_error(HTTPStatus.NOT_FOUND, "object_not_found", "database not found")
                return
            self._write_json(HTTPStatus.OK, {"object": "database", "id": database_match.group(1), "properties": properties})
            return

        page_match = _PAGE_PATH_RE.match(self.path)
        if page_match:
            page = self.state["pages"].get(page_match.group(1))
            if page is None:
                self._write_error(HTTPStatus.NOT_FOUND, "object_not_found", "page not found")
                return
            self._write_json(HTTPStatus.OK, _public_page(page))
            return

        self._write_error(HTTPStatus.NOT_FOUND, "invalid_request_url", "not found")

    def do_POST(self) -> None:  # noqa: N802 - stdlib handler signature
        query_match = _QUERY_PATH_RE.match(self.path)
        if not query_match:
            self._write_error(HTTPStatus.NOT_FOUND, "invalid_request_url", "not found")
            return

        database_id = query_match.group(1)
        body = self._read_json()
        pages = [
            _public_page(page)
            for page in self.state["pages"].values()
            if page["parent"] == database_id and _matches_filter(page, body.get("filter"))
        ]
        self._write_json(HTTPStatus.OK, {"object": "list", "results": pages, "has_more": False, "next_cursor": None})

    def do_PATCH(self) -> None:  # noqa: N802 - stdlib handler signature
        page_match = _PAGE_PATH_RE.match(self.path)
        page = self.state["pages"].get(page_match.group(1)) if page_match else None
        if page is None:
            self._write_error(HTTPStatus.NOT_FOUND, "object_not_found", "page not found")
            return

        body = self._read_json()
        for name, update in (body.get("properties") or {}).items():
            current = page["properties"].get(name)
            if current is None:
                self._write_error(HTTPStatus.BAD_REQUEST, "validation_error", f"{name} is not a property that exists")
                return
            kind = current["type"]
            value = update.get(kind)
            if kind in {"title", "rich_text"}:
                value = [_rich_text(item["text"]["content"])[0] for item in value or []]
            current[kind] = value
        self._write_json(HTTPStatus.OK, _public_page(page))

    def log_message(self, _: str, *args: object) -> None:
        # Keep logs terse for local runs.
        if args:
            print("mock-notion:", *args)

    def _read_json(self) -> dict[str, Any]:
        length = int(self.headers.get("Content-Length") or 0)
        if not length:
            return {}
        try:
            payload = json.loads(self.rfile.read(length))
        except json.JSONDecodeError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_error(self, status: HTTPStatus, code: str, message: str) -> None:
        self._write_json(status, {"object": "error", "status": status.value, "code": code, "message": message})

    def _write_json(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
        raw = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def _public_page(page: dict[str, Any]) -> dict[str, Any]:
    public = copy.deepcopy(page)
    public["object"] = "page"
    public.pop("parent", None)
    return public


def _matches_filter(page: dict[str, Any], page_filter: dict[str, Any] | None) -> bool:
    if not page_filter:
        return True
    value = page["properties"].get(page_filter.get("property"))
    if value is None:
        return False
    kind = value["type"]
    condition = page_filter.get(kind) or {}
    if "equals" not in condition:
        return True
    if kind in {"title", "rich_text"}:
        actual: Any = "".join(item.get("plain_text", "") for item in value[kind])
    elif kind in {"select", "status"}:
        actual = (value[kind] or {}).get("name")
    else:
        actual = value[kind]
    return actual == condition["equals"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock Notion API for local vote relay runs.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54330)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), MockNotionHandler)
    print(
        f"mock-notion listening on http://{args.host}:{args.port}/v1 "
        f"(NOTION_DATABASE_ID={VOTE_DATABASE_ID} KEY_DB={KEY_DATABASE_ID})",
        flush=True,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
