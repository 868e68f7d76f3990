"""Column role discovery for operator-defined Notion databases.

Key databases are built by hand, so the columns holding the invitation key,
the "already used" flag and the stored ballot can be named anything. Each
role is described by a :class:`RoleRule`; :func:`resolve_role` walks the
rule's steps in priority order (operator override, exact names, fuzzy
matchers restricted to acceptable column types, type fallbacks) and returns
the first column that satisfies it, scanning columns in schema order.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

from vote_relay.core.cache import TTLCache
from vote_relay.core.config import get_settings
from vote_relay.core.errors import SchemaResolutionError
from vote_relay.core.retry import RetryPolicy, with_retry
from vote_relay.services.notion import NotionClient, get_notion_client

MAX_RESULT_CHUNK_LENGTH = 1900
MAX_RESULT_CHUNKS = 100
TRUNCATION_SUFFIX = "..."
USED_MARKER = "是"
AFFIRMATIVE_OPTION_RE = re.compile(r"是|yes|true|已用|已使用|used", re.IGNORECASE)

logger = logging.getLogger(__name__)

Matcher = str | re.Pattern[str]


class Role(str, Enum):
    KEY = "key"
    USED = "used"
    RESULT = "result"
    VOTE_COUNT = "vote_count"


@dataclass(frozen=True, slots=True)
class RoleBinding:
    name: str
    schema: dict[str, Any]

    @property
    def type(self) -> str | None:
        return self.schema.get("type")


@dataclass(frozen=True, slots=True)
class RoleRule:
    role: Role
    exact_names: tuple[str, ...]
    matchers: tuple[Matcher, ...]
    allowed_types: tuple[str, ...]
    fallback_types: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class KeyRoleBindings:
    key: RoleBinding
    used: RoleBinding


ROLE_RULES: dict[Role, RoleRule] = {
    Role.KEY: RoleRule(
        role=Role.KEY,
        exact_names=("投票密码",),
        matchers=("密码", "密钥", "口令", "key", "pass", "code", "token"),
        allowed_types=("title", "rich_text", "select", "number"),
        fallback_types=("title", "rich_text"),
    ),
    Role.USED: RoleRule(
        role=Role.USED,
        exact_names=("是否已经使用？", "是否已经使用", "是否已使用", "是否使用"),
        matchers=("使用", "已用", "已使用", "状态", "used", "status"),
        allowed_types=("checkbox", "select", "status", "rich_text", "title", "number"),
    ),
    Role.RESULT: RoleRule(
        role=Role.RESULT,
        exact_names=("投票结果",),
        matchers=("投票结果", "结果", "json", "vote", "result"),
        allowed_types=("rich_text", "title"),
        fallback_types=("rich_text",),
    ),
    Role.VOTE_COUNT: RoleRule(
        role=Role.VOTE_COUNT,
        exact_names=(),
        matchers=(re.compile(r"vote|票|得票|投票", re.IGNORECASE),),
        allowed_types=("number",),
        fallback_types=("number",),
    ),
}


def resolve_role(
    schema: Mapping[str, dict[str, Any]],
    role: Role,
    *,
    override: str | None = None,
    exclude: Collection[str] = (),
) -> RoleBinding:
    rule = ROLE_RULES[role]

    if override and override in schema:
        return RoleBinding(override, schema[override])

    for name in rule.exact_names:
        if name in schema:
            return RoleBinding(name, schema[name])

    for name, column in schema.items():
        if column.get("type") not in rule.allowed_types:
            continue
        if any(_matches(name, matcher) for matcher in rule.matchers):
            return RoleBinding(name, column)

    for fallback_type in rule.fallback_types:
        for name, column in schema.items():
            if column.get("type") == fallback_type and name not in exclude:
                return RoleBinding(name, column)

    raise SchemaResolutionError(f"unable to locate a column for the {role.value} role")


def _matches(name: str, matcher: Matcher) -> bool:
    if isinstance(matcher, re.Pattern):
        return matcher.search(name) is not None
    return matcher.lower() in name.lower()


def resolve_option_name(column: dict[str, Any], preferred: str) -> str:
    config = column.get("select") or column.get("status") or {}
    options = [option for option in config.get("options") or [] if option.get("name")]
    if not options:
        return preferred
    for option in options:
        if option["name"] == preferred:
            return option["name"]
    for option in options:
        if AFFIRMATIVE_OPTION_RE.search(option["name"]):
            return option["name"]
    return options[0]["name"]


def build_used_update(binding: RoleBinding) -> dict[str, Any]:
    kind = binding.type
    if kind == "checkbox":
        return {"checkbox": True}
    if kind in {"select", "status"}:
        return {kind: {"name": resolve_option_name(binding.schema, USED_MARKER)}}
    if kind in {"rich_text", "title"}:
        return {kind: [{"text": {"content": USED_MARKER}}]}
    if kind == "number":
        return {"number": 1}
    raise SchemaResolutionError(f"unsupported used column type: {kind}")


def chunk_result_content(content: str) -> list[str]:
    chunks = [
        content[index : index + MAX_RESULT_CHUNK_LENGTH]
        for index in range(0, min(len(content), MAX_RESULT_CHUNK_LENGTH * MAX_RESULT_CHUNKS), MAX_RESULT_CHUNK_LENGTH)
    ]
    if len(content) > MAX_RESULT_CHUNK_LENGTH * MAX_RESULT_CHUNKS and chunks:
        keep = max(0, MAX_RESULT_CHUNK_LENGTH - len(TRUNCATION_SUFFIX))
        chunks[-1] = chunks[-1][:keep] + TRUNCATION_SUFFIX
    return chunks


def build_result_update(binding: RoleBinding, content: str | None) -> dict[str, Any]:
    kind = binding.type
    if kind not in {"rich_text", "title"}:
        raise SchemaResolutionError(f"result column must be rich_text or title (got {kind})")
    return {kind: [{"text": {"content": chunk}} for chunk in chunk_result_content(content or "")]}


def build_key_filter(binding: RoleBinding, key_value: str) -> dict[str, Any] | None:
    kind = binding.type
    if kind in {"title", "rich_text", "select"}:
        return {"property": binding.name, kind: {"equals": key_value}}
    if kind == "number":
        try:
            numeric = float(key_value)
        except ValueError:
            return None
        if not math.isfinite(numeric):
            return None
        return {"property": binding.name, "number": {"equals": int(numeric) if numeric.is_integer() else numeric}}
    return None


@dataclass(slots=True)
class SchemaRoleResolver:
    """Resolves and caches role bindings per database.

    Schemas and bindings expire after ``ttl_seconds``; nothing invalidates
    them when the database changes before that.
    """

    client: NotionClient
    ttl_seconds: float = 300.0
    overrides: dict[Role, str] = field(default_factory=dict)
    retry_policy: RetryPolicy | None = None
    _schemas: TTLCache[dict[str, dict[str, Any]]] = field(init=False)
    _bindings: TTLCache[RoleBinding] = field(init=False)

    def __post_init__(self) -> None:
        self._schemas = TTLCache(self.ttl_seconds)
        self._bindings = TTLCache(self.ttl_seconds)

    async def schema(self, database_id: str) -> dict[str, dict[str, Any]]:
        cached = self._schemas.get(database_id)
        if cached is not None:
            return cached
        database = await with_retry(lambda: self.client.retrieve_database(database_id), policy=self.retry_policy)
        properties = database.get("properties") or {}
        self._schemas.set(database_id, properties)
        return properties

    async def binding(self, database_id: str, role: Role) -> RoleBinding:
        cache_key = (database_id, role)
        cached = self._bindings.get(cache_key)
        if cached is not None:
            return cached

        override = self.overrides.get(role)
        if role is Role.VOTE_COUNT and override:
            # Trusted as-is; the column type is checked on every target record.
            resolved = RoleBinding(override, {"type": "number", "number": {}})
        else:
            schema = await self.schema(database_id)
            exclude: tuple[str, ...] = ()
            if role is Role.RESULT:
                key = await self.binding(database_id, Role.KEY)
                used = await self.binding(database_id, Role.USED)
                exclude = (key.name, used.name)
            resolved = resolve_role(schema, role, override=override, exclude=exclude)
            logger.debug("resolved role=%s column=%s database_id=%s", role.value, resolved.name, database_id)

        self._bindings.set(cache_key, resolved)
        return resolved

    async def key_bindings(self, database_id: str) -> KeyRoleBindings:
        return KeyRoleBindings(
            key=await self.binding(database_id, Role.KEY),
            used=await self.binding(database_id, Role.USED),
        )

    def invalidate(self) -> None:
        self._schemas.invalidate()
        self._bindings.invalidate()


@lru_cache
def get_schema_resolver() -> SchemaRoleResolver:
    settings = get_settings()
    overrides = {
        Role.KEY: settings.key_db_key_property,
        Role.USED: settings.key_db_used_property,
        Role.RESULT: settings.key_db_result_property,
        Role.VOTE_COUNT: settings.notion_vote_property,
    }
    return SchemaRoleResolver(
        client=get_notion_client(),
        ttl_seconds=settings.schema_cache_ttl_seconds,
        overrides={role: name for role, name in overrides.items() if name},
        retry_policy=RetryPolicy(max_retries=settings.notion_max_retries),
    )
