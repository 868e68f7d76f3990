from __future__ import annotations

import asyncio
import json

import pytest

from vote_relay.core.errors import KeyAlreadyUsedError, NonNumericVoteColumnError, RetryExhaustedError
from vote_relay.schemas.votes import UpdateOutcome
from vote_relay.services.aggregator import VoteDelta
from vote_relay.services.notion import NotionAPIError
from vote_relay.services.schema_roles import SchemaRoleResolver
from vote_relay.services.vote_updater import VoteUpdater


def _updater(fake_notion, retry_policy, *, key_database_id: str | None = "keys-db", concurrency: int = 2) -> VoteUpdater:
    return VoteUpdater(
        fake_notion,
        SchemaRoleResolver(client=fake_notion, retry_policy=retry_policy),
        vote_database_id="votes-db",
        key_database_id=key_database_id,
        concurrency=concurrency,
        retry_policy=retry_policy,
    )


def test_apply_updates_votes_stores_results_and_marks_key_used(fake_notion, retry_policy) -> None:
    payload = {"votes": [{"id": "a", "count": 2}], "note": "投票"}

    outcome = asyncio.run(
        _updater(fake_notion, retry_policy).apply("k1", [VoteDelta("a", 2), VoteDelta("b", 1)], payload)
    )

    assert outcome.updated == 2
    assert outcome.vote_property == "Votes"
    assert {(item.id, item.previous, item.next) for item in outcome.results} == {("a", 0, 2), ("b", 5, 6)}
    assert outcome.results_saved is True
    assert outcome.results_error is None
    assert fake_notion.pages["a"]["properties"]["Votes"]["number"] == 2
    assert fake_notion.pages["b"]["properties"]["Votes"]["number"] == 6

    key_page = fake_notion.pages["k1"]["properties"]
    assert key_page["是否已经使用？"] == {"type": "checkbox", "checkbox": True}
    stored = "".join(item["plain_text"] for item in key_page["投票结果"]["rich_text"])
    assert json.loads(stored) == payload
    assert "投票" in stored


def test_used_key_is_rejected_before_any_vote_write(fake_notion, retry_policy) -> None:
    with pytest.raises(KeyAlreadyUsedError):
        asyncio.run(_updater(fake_notion, retry_policy).apply("k2", [VoteDelta("a", 1)], {}))

    assert fake_notion.updates == []
    assert ("retrieve_page", "a") not in fake_notion.calls


def test_without_key_database_only_votes_are_written(fake_notion, retry_policy) -> None:
    outcome = asyncio.run(
        _updater(fake_notion, retry_policy, key_database_id=None).apply("k1", [VoteDelta("c", 3)], {})
    )

    assert outcome.updated == 1
    assert outcome.results_saved is False
    assert [page_id for page_id, _ in fake_notion.updates] == ["c"]


def test_empty_deltas_still_redeem_key(fake_notion, retry_policy) -> None:
    outcome = asyncio.run(_updater(fake_notion, retry_policy).apply("k1", [], None))

    assert outcome == UpdateOutcome(updated=0, vote_property=None, results=[], results_saved=True, results_error=None)
    assert fake_notion.pages["k1"]["properties"]["投票结果"]["rich_text"][0]["plain_text"] == "{}"
    assert ("retrieve_database", "votes-db") not in fake_notion.calls


def test_non_numeric_target_fails_after_attempting_every_target(fake_notion, retry_policy) -> None:
    fake_notion.pages["b"]["properties"]["Votes"] = {"type": "rich_text", "rich_text": []}

    with pytest.raises(NonNumericVoteColumnError):
        asyncio.run(
            _updater(fake_notion, retry_policy).apply(
                "k1", [VoteDelta("a", 1), VoteDelta("b", 1), VoteDelta("c", 1)], {}
            )
        )

    updated_pages = {page_id for page_id, _ in fake_notion.updates}
    assert updated_pages == {"a", "c"}
    assert fake_notion.pages["k1"]["properties"]["是否已经使用？"]["checkbox"] is False


def test_retry_exhaustion_on_target_fails_apply(fake_notion, retry_policy) -> None:
    fake_notion.fail_next("update_page", "a", *[NotionAPIError("busy", status=503) for _ in range(4)])

    with pytest.raises(RetryExhaustedError):
        asyncio.run(_updater(fake_notion, retry_policy).apply(None, [VoteDelta("a", 1)], {}))

    assert fake_notion.pages["a"]["properties"]["Votes"]["number"] == 0


def test_transient_failures_are_retried_per_call(fake_notion, retry_policy, sleep_recorder) -> None:
    fake_notion.fail_next("retrieve_page", "a", NotionAPIError("slow", status=429, retry_after=1.5))
    fake_notion.fail_next("update_page", "a", NotionAPIError("oops", status=500))

    outcome = asyncio.run(_updater(fake_notion, retry_policy).apply(None, [VoteDelta("a", 4)], {}))

    assert outcome.updated == 1
    assert fake_notion.pages["a"]["properties"]["Votes"]["number"] == 4
    assert len(sleep_recorder.delays) == 2
    assert sleep_recorder.delays[0] == 1.5


def test_result_and_used_failures_are_recorded_not_raised(fake_notion, retry_policy) -> None:
    fake_notion.fail_next(
        "update_page",
        "k1",
        NotionAPIError("result column locked", status=400),
        NotionAPIError("flag column locked", status=400),
    )

    outcome = asyncio.run(_updater(fake_notion, retry_policy).apply("k1", [VoteDelta("a", 1)], {"x": 1}))

    assert outcome.updated == 1
    assert outcome.results_saved is False
    assert outcome.results_error == "result column locked; flag column locked"
    assert fake_notion.pages["a"]["properties"]["Votes"]["number"] == 1


def test_missing_result_column_still_marks_key_used(fake_notion, retry_policy) -> None:
    del fake_notion.databases["keys-db"]["投票结果"]

    outcome = asyncio.run(_updater(fake_notion, retry_policy).apply("k1", [], {"x": 1}))

    assert outcome.results_saved is False
    assert "result role" in (outcome.results_error or "")
    assert fake_notion.pages["k1"]["properties"]["是否已经使用？"]["checkbox"] is True


def test_worker_pool_bounds_concurrent_target_updates(fake_notion, retry_policy) -> None:
    in_flight = {"now": 0, "peak": 0}
    original = fake_notion.retrieve_page

    async def slow_retrieve(page_id: str):
        in_flight["now"] += 1
        in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        await asyncio.sleep(0.01)
        try:
            return await original(page_id)
        finally:
            in_flight["now"] -= 1

    fake_notion.retrieve_page = slow_retrieve

    outcome = asyncio.run(
        _updater(fake_notion, retry_policy, key_database_id=None, concurrency=2).apply(
            None, [VoteDelta("a", 1), VoteDelta("b", 1), VoteDelta("c", 1)], {}
        )
    )

    assert outcome.updated == 3
    assert in_flight["peak"] == 2


def test_stored_results_are_compact_json(fake_notion, retry_policy) -> None:
    payload = {"votes": [{"id": "a", "count": 1}], "note": "好"}

    asyncio.run(_updater(fake_notion, retry_policy).apply("k1", [], payload))

    stored = fake_notion.pages["k1"]["properties"]["投票结果"]["rich_text"][0]["plain_text"]
    assert stored == '{"votes":[{"id":"a","count":1}],"note":"好"}'
