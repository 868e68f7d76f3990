from __future__ import annotations

import asyncio

import pytest

from vote_relay.core.errors import SchemaResolutionError
from vote_relay.services.schema_roles import (
    MAX_RESULT_CHUNK_LENGTH,
    MAX_RESULT_CHUNKS,
    Role,
    RoleBinding,
    SchemaRoleResolver,
    build_key_filter,
    build_result_update,
    build_used_update,
    chunk_result_content,
    resolve_role,
)


def test_used_role_prefers_exact_name_over_other_candidates() -> None:
    schema = {
        "Status": {"type": "status", "status": {"options": []}},
        "used?": {"type": "select", "select": {"options": []}},
        "是否已使用": {"type": "checkbox", "checkbox": {}},
    }

    binding = resolve_role(schema, Role.USED)

    assert binding.name == "是否已使用"
    assert binding.type == "checkbox"


def test_override_wins_when_present_and_is_ignored_when_missing() -> None:
    schema = {
        "投票密码": {"type": "title", "title": {}},
        "Invite": {"type": "rich_text", "rich_text": {}},
    }

    assert resolve_role(schema, Role.KEY, override="Invite").name == "Invite"
    assert resolve_role(schema, Role.KEY, override="Missing").name == "投票密码"


def test_fuzzy_match_respects_allowed_types_and_schema_order() -> None:
    schema = {
        "Access key notes": {"type": "files", "files": {}},
        "Invite Code": {"type": "rich_text", "rich_text": {}},
        "Pass token": {"type": "rich_text", "rich_text": {}},
        "Name": {"type": "title", "title": {}},
    }

    assert resolve_role(schema, Role.KEY).name == "Invite Code"


def test_key_role_falls_back_to_title_then_rich_text() -> None:
    assert resolve_role({"Notes": {"type": "rich_text"}, "Name": {"type": "title"}}, Role.KEY).name == "Name"
    assert resolve_role({"Notes": {"type": "rich_text"}}, Role.KEY).name == "Notes"


def test_result_role_fallback_skips_columns_bound_to_other_roles() -> None:
    schema = {
        "Password": {"type": "rich_text"},
        "Flag": {"type": "rich_text"},
        "Payload": {"type": "rich_text"},
    }

    binding = resolve_role(schema, Role.RESULT, exclude=("Password", "Flag"))

    assert binding.name == "Payload"


def test_result_role_rejects_non_text_fuzzy_candidates() -> None:
    schema = {"Vote result": {"type": "number"}, "Name": {"type": "title"}}

    with pytest.raises(SchemaResolutionError):
        resolve_role(schema, Role.RESULT)


def test_used_role_has_no_fallback() -> None:
    with pytest.raises(SchemaResolutionError):
        resolve_role({"Name": {"type": "title"}, "Flag": {"type": "checkbox"}}, Role.USED)


def test_vote_count_matches_vote_named_number_or_first_number() -> None:
    schema = {
        "Price": {"type": "number"},
        "得票数": {"type": "number"},
        "Vote notes": {"type": "rich_text"},
    }
    assert resolve_role(schema, Role.VOTE_COUNT).name == "得票数"
    assert resolve_role({"Price": {"type": "number"}, "Rank": {"type": "number"}}, Role.VOTE_COUNT).name == "Price"

    with pytest.raises(SchemaResolutionError):
        resolve_role({"Name": {"type": "title"}}, Role.VOTE_COUNT)


def test_build_used_update_per_column_type() -> None:
    assert build_used_update(RoleBinding("u", {"type": "checkbox"})) == {"checkbox": True}
    assert build_used_update(RoleBinding("u", {"type": "number"})) == {"number": 1}
    assert build_used_update(RoleBinding("u", {"type": "rich_text"})) == {
        "rich_text": [{"text": {"content": "是"}}]
    }

    exact = RoleBinding("u", {"type": "select", "select": {"options": [{"name": "否"}, {"name": "是"}]}})
    affirmative = RoleBinding("u", {"type": "status", "status": {"options": [{"name": "New"}, {"name": "Used up"}]}})
    first = RoleBinding("u", {"type": "select", "select": {"options": [{"name": "Open"}, {"name": "Closed"}]}})
    empty = RoleBinding("u", {"type": "select", "select": {"options": []}})
    assert build_used_update(exact) == {"select": {"name": "是"}}
    assert build_used_update(affirmative) == {"status": {"name": "Used up"}}
    assert build_used_update(first) == {"select": {"name": "Open"}}
    assert build_used_update(empty) == {"select": {"name": "是"}}

    with pytest.raises(SchemaResolutionError):
        build_used_update(RoleBinding("u", {"type": "date"}))


def test_result_update_splits_content_into_chunks() -> None:
    content = "x" * (MAX_RESULT_CHUNK_LENGTH * 2 + 10)

    update = build_result_update(RoleBinding("r", {"type": "rich_text"}), content)

    chunks = [item["text"]["content"] for item in update["rich_text"]]
    assert [len(chunk) for chunk in chunks] == [MAX_RESULT_CHUNK_LENGTH, MAX_RESULT_CHUNK_LENGTH, 10]
    assert "".join(chunks) == content


def test_oversized_result_is_truncated_with_marker_within_cap() -> None:
    cap = MAX_RESULT_CHUNK_LENGTH * MAX_RESULT_CHUNKS
    content = "y" * (cap + 500)

    chunks = chunk_result_content(content)

    assert len(chunks) == MAX_RESULT_CHUNKS
    assert all(len(chunk) <= MAX_RESULT_CHUNK_LENGTH for chunk in chunks)
    assert chunks[-1].endswith("...")
    assert sum(len(chunk) for chunk in chunks) <= cap


def test_result_update_requires_text_column() -> None:
    with pytest.raises(SchemaResolutionError):
        build_result_update(RoleBinding("r", {"type": "checkbox"}), "{}")


def test_build_key_filter() -> None:
    assert build_key_filter(RoleBinding("K", {"type": "title"}), "abc") == {"property": "K", "title": {"equals": "abc"}}
    assert build_key_filter(RoleBinding("K", {"type": "number"}), "42") == {"property": "K", "number": {"equals": 42}}
    assert build_key_filter(RoleBinding("K", {"type": "number"}), "abc") is None
    assert build_key_filter(RoleBinding("K", {"type": "status"}), "abc") is None


def test_resolver_caches_schema_and_bindings(fake_notion, retry_policy) -> None:
    resolver = SchemaRoleResolver(client=fake_notion, retry_policy=retry_policy)

    async def run() -> tuple[RoleBinding, RoleBinding, RoleBinding]:
        first = await resolver.binding("keys-db", Role.USED)
        second = await resolver.binding("keys-db", Role.USED)
        result = await resolver.binding("keys-db", Role.RESULT)
        return first, second, result

    first, second, result = asyncio.run(run())

    assert first is second
    assert result.name == "投票结果"
    assert fake_notion.calls.count(("retrieve_database", "keys-db")) == 1


def test_resolver_refetches_after_invalidate(fake_notion, retry_policy) -> None:
    resolver = SchemaRoleResolver(client=fake_notion, retry_policy=retry_policy)

    async def run() -> None:
        await resolver.binding("votes-db", Role.VOTE_COUNT)
        resolver.invalidate()
        await resolver.binding("votes-db", Role.VOTE_COUNT)

    asyncio.run(run())

    assert fake_notion.calls.count(("retrieve_database", "votes-db")) == 2


def test_vote_count_override_skips_schema_fetch(fake_notion, retry_policy) -> None:
    resolver = SchemaRoleResolver(
        client=fake_notion,
        overrides={Role.VOTE_COUNT: "Tally"},
        retry_policy=retry_policy,
    )

    binding = asyncio.run(resolver.binding("votes-db", Role.VOTE_COUNT))

    assert binding.name == "Tally"
    assert fake_notion.calls == []
