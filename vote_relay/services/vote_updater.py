from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any, TypeVar

from opentelemetry import trace

from vote_relay.core.config import get_settings
from vote_relay.core.errors import ConfigurationError, KeyAlreadyUsedError, NonNumericVoteColumnError
from vote_relay.core.retry import RetryPolicy, with_retry
from vote_relay.schemas.votes import TargetUpdate, UpdateOutcome
from vote_relay.services.aggregator import VoteDelta
from vote_relay.services.notion import NotionClient, get_notion_client
from vote_relay.services.properties import is_used_value
from vote_relay.services.schema_roles import (
    Role,
    SchemaRoleResolver,
    build_result_update,
    build_used_update,
    get_schema_resolver,
)

T = TypeVar("T")
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class VoteUpdater:
    """Applies aggregated vote deltas and redeems the invitation key.

    Vote-count writes are committed target by target and never rolled back.
    Once they succeed, failures while storing the ballot or flagging the key
    are reported through ``UpdateOutcome.results_error`` instead of raising.
    """

    def __init__(
        self,
        client: NotionClient,
        resolver: SchemaRoleResolver,
        *,
        vote_database_id: str | None,
        key_database_id: str | None,
        concurrency: int = 2,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.vote_database_id = vote_database_id
        self.key_database_id = key_database_id
        self.concurrency = max(1, concurrency)
        self.retry_policy = retry_policy

    async def apply(self, key_id: str | None, deltas: list[VoteDelta], results_payload: Any) -> UpdateOutcome:
        redeem_key = bool(self.key_database_id and key_id)
        if redeem_key:
            await self._ensure_key_unused(key_id)

        outcome = UpdateOutcome()
        if deltas:
            with tracer.start_as_current_span("vote_update.apply_deltas") as span:
                span.set_attribute("vote.targets", len(deltas))
                binding = await self.resolver.binding(self._require_vote_database(), Role.VOTE_COUNT)
                outcome.vote_property = binding.name
                outcome.results = await self._apply_deltas(binding.name, deltas)
                outcome.updated = len(outcome.results)

        if redeem_key:
            with tracer.start_as_current_span("vote_update.redeem_key"):
                await self._redeem_key(key_id, results_payload, outcome)
        return outcome

    async def _ensure_key_unused(self, key_id: str) -> None:
        used = await self.resolver.binding(self.key_database_id, Role.USED)
        page = await self._retry(lambda: self.client.retrieve_page(key_id))
        if is_used_value((page.get("properties") or {}).get(used.name)):
            raise KeyAlreadyUsedError("Key already used.")

    async def _apply_deltas(self, column: str, deltas: list[VoteDelta]) -> list[TargetUpdate]:
        semaphore = asyncio.Semaphore(min(self.concurrency, len(deltas)))

        async def run(delta: VoteDelta) -> TargetUpdate:
            async with semaphore:
                return await self._apply_delta(column, delta)

        outcomes = await asyncio.gather(*(run(delta) for delta in deltas), return_exceptions=True)
        failures = [item for item in outcomes if isinstance(item, BaseException)]
        if failures:
            logger.warning("vote update failed for %s of %s targets", len(failures), len(deltas))
            raise failures[0]
        return [item for item in outcomes if isinstance(item, TargetUpdate)]

    async def _apply_delta(self, column: str, delta: VoteDelta) -> TargetUpdate:
        page = await self._retry(lambda: self.client.retrieve_page(delta.target_id))
        value = (page.get("properties") or {}).get(column)
        if not value or value.get("type") != "number":
            raise NonNumericVoteColumnError(f'Vote property "{column}" is not numeric.')

        current = value.get("number") or 0
        following = current + delta.count
        await self._retry(lambda: self.client.update_page(delta.target_id, {column: {"number": following}}))
        return TargetUpdate(id=delta.target_id, previous=current, next=following)

    async def _redeem_key(self, key_id: str, results_payload: Any, outcome: UpdateOutcome) -> None:
        errors: list[str] = []

        try:
            result = await self.resolver.binding(self.key_database_id, Role.RESULT)
            content = json.dumps(
                results_payload if results_payload is not None else {}, ensure_ascii=False, separators=(",", ":")
            )
            update = build_result_update(result, content)
            await self._retry(lambda: self.client.update_page(key_id, {result.name: update}))
            outcome.results_saved = True
        except Exception as exc:
            logger.error("key result update failed key_id=%s: %s", key_id, exc)
            errors.append(str(exc))

        try:
            used = await self.resolver.binding(self.key_database_id, Role.USED)
            update = build_used_update(used)
            await self._retry(lambda: self.client.update_page(key_id, {used.name: update}))
        except Exception as exc:
            logger.error("key used update failed key_id=%s: %s", key_id, exc)
            errors.append(str(exc))

        outcome.results_error = "; ".join(errors) or None

    async def _retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(operation, policy=self.retry_policy)

    def _require_vote_database(self) -> str:
        if not self.vote_database_id:
            raise ConfigurationError("NOTION_DATABASE_ID is required to apply votes")
        return self.vote_database_id


@lru_cache
def get_vote_updater() -> VoteUpdater:
    settings = get_settings()
    return VoteUpdater(
        get_notion_client(),
        get_schema_resolver(),
        vote_database_id=settings.notion_database_id,
        key_database_id=settings.key_database_id,
        concurrency=settings.vote_update_concurrency,
        retry_policy=RetryPolicy(max_retries=settings.notion_max_retries),
    )
