from __future__ import annotations

import logging

from vote_relay.core.errors import InvalidKeyError, KeyAlreadyUsedError
from vote_relay.core.retry import RetryPolicy
from vote_relay.services.notion import NotionClient, query_all_pages
from vote_relay.services.properties import is_used_value, property_text
from vote_relay.services.schema_roles import SchemaRoleResolver, build_key_filter

logger = logging.getLogger(__name__)


async def verify_vote_key(
    client: NotionClient,
    resolver: SchemaRoleResolver,
    key_database_id: str,
    key: str,
    *,
    retry_policy: RetryPolicy | None = None,
) -> str:
    """Return the key record id for an unused invitation key."""
    bindings = await resolver.key_bindings(key_database_id)
    key_filter = build_key_filter(bindings.key, key)
    pages = await query_all_pages(client, key_database_id, filter=key_filter, retry_policy=retry_policy)

    if key_filter is None:
        # No server-side filter for this column type; compare the text client-side.
        page = next(
            (item for item in pages if property_text((item.get("properties") or {}).get(bindings.key.name)) == key),
            None,
        )
    else:
        page = pages[0] if pages else None

    if page is None:
        raise InvalidKeyError("密码无效或不存在。")
    if is_used_value((page.get("properties") or {}).get(bindings.used.name)):
        logger.info("rejected used vote key key_id=%s", page.get("id"))
        raise KeyAlreadyUsedError("该密码已使用。")
    return page["id"]
