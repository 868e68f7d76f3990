from __future__ import annotations

import re
from typing import Any

AFFIRMATIVE_RE = re.compile(r"^(是|yes|true|已用|已使用|used)$", re.IGNORECASE)


def join_rich_text(items: list[dict[str, Any]] | None) -> str:
    return "".join(item.get("plain_text") or "" for item in items or []).strip()


def is_affirmative(text: str | None) -> bool:
    if not text:
        return False
    return AFFIRMATIVE_RE.match(text.strip()) is not None


def property_text(value: dict[str, Any] | None) -> str:
    """Plain text of a property value, as used for key comparisons."""
    if not value:
        return ""
    kind = value.get("type")
    if kind in {"title", "rich_text"}:
        return join_rich_text(value.get(kind))
    if kind in {"select", "status"}:
        return _option_name(value.get(kind))
    if kind == "number":
        return _number_text(value.get("number"))
    if kind == "checkbox":
        return "true" if value.get("checkbox") else ""
    return ""


def is_used_value(value: dict[str, Any] | None) -> bool:
    if not value:
        return False
    kind = value.get("type")
    if kind == "checkbox":
        return bool(value.get("checkbox"))
    if kind in {"select", "status"}:
        return is_affirmative(_option_name(value.get(kind)))
    if kind in {"title", "rich_text"}:
        return is_affirmative(join_rich_text(value.get(kind)))
    if kind == "number":
        number = value.get("number")
        return isinstance(number, (int, float)) and number > 0
    return False


def normalize_page(page: dict[str, Any]) -> dict[str, Any]:
    entries = list((page.get("properties") or {}).items())
    title = next(
        (join_rich_text(value.get("title")) for _, value in entries if value.get("type") == "title"),
        "",
    )

    properties = []
    for name, value in entries:
        if value.get("type") == "title":
            continue
        formatted = format_property(value)
        if formatted:
            properties.append({"name": name, "type": value.get("type"), "value": formatted})

    return {
        "id": page.get("id"),
        "title": title,
        "cover": _cover_url(page.get("cover")),
        "properties": properties,
    }


def format_property(value: dict[str, Any]) -> str | list[str]:
    kind = value.get("type")
    data = value.get(kind) if isinstance(kind, str) else None
    if kind in {"title", "rich_text"}:
        return join_rich_text(data)
    if kind in {"select", "status"}:
        return _option_name(data)
    if kind == "multi_select":
        return ", ".join(item.get("name") or "" for item in data or [])
    if kind == "number":
        return _number_text(data)
    if kind == "date":
        return _format_date(data)
    if kind == "checkbox":
        return "Yes" if data else "No"
    if kind == "people":
        return ", ".join(person.get("name") or person.get("id") or "" for person in data or [])
    if kind == "files":
        urls = [_file_url(item) for item in data or []]
        return [url for url in urls if url]
    if kind in {"url", "email", "phone_number", "created_time", "last_edited_time"}:
        return data or ""
    if kind == "relation":
        return f"{len(data)} related" if data else ""
    if kind == "formula":
        return _format_formula(data)
    if kind == "rollup":
        return _format_rollup(data)
    return ""


def _format_formula(formula: dict[str, Any] | None) -> str:
    if not formula:
        return ""
    kind = formula.get("type")
    if kind == "string":
        return formula.get("string") or ""
    if kind == "number":
        return _number_text(formula.get("number"))
    if kind == "boolean":
        return "Yes" if formula.get("boolean") else "No"
    if kind == "date":
        return _format_date(formula.get("date"))
    return ""


def _format_rollup(rollup: dict[str, Any] | None) -> str:
    if not rollup:
        return ""
    kind = rollup.get("type")
    if kind == "number":
        return _number_text(rollup.get("number"))
    if kind == "date":
        return _format_date(rollup.get("date"))
    if kind == "array":
        values = [_stringify(format_property(item)) for item in rollup.get("array") or []]
        return ", ".join(value for value in values if value)
    return ""


def _format_date(date_range: dict[str, Any] | None) -> str:
    if not date_range:
        return ""
    if date_range.get("end"):
        return f"{date_range.get('start')} -> {date_range['end']}"
    return date_range.get("start") or ""


def _stringify(value: str | list[str]) -> str:
    if isinstance(value, list):
        return ", ".join(value)
    return value


def _option_name(option: dict[str, Any] | None) -> str:
    if not isinstance(option, dict):
        return ""
    return option.get("name") or ""


def _number_text(number: Any) -> str:
    if number is None:
        return ""
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def _file_url(item: dict[str, Any]) -> str:
    for kind in ("file", "external"):
        nested = item.get(kind)
        if isinstance(nested, dict) and nested.get("url"):
            return nested["url"]
    return item.get("name") or ""


def _cover_url(cover: dict[str, Any] | None) -> str:
    if not cover:
        return ""
    kind = cover.get("type")
    if kind in {"external", "file"}:
        nested = cover.get(kind) or {}
        return nested.get("url") or ""
    return ""
