import logging

from fastapi import APIRouter, Depends, HTTPException, status

from vote_relay.core.config import Settings, get_settings
from vote_relay.core.errors import InvalidKeyError, KeyAlreadyUsedError, VoteRelayError
from vote_relay.schemas.votes import VoteKeyIn, VoteKeyOut
from vote_relay.services.keys import verify_vote_key
from vote_relay.services.notion import NotionAPIError, NotionClient, get_notion_client
from vote_relay.services.schema_roles import SchemaRoleResolver, get_schema_resolver

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/vote-key", response_model=VoteKeyOut)
async def verify_key(
    payload: VoteKeyIn,
    settings: Settings = Depends(get_settings),
    client: NotionClient = Depends(get_notion_client),
    resolver: SchemaRoleResolver = Depends(get_schema_resolver),
) -> VoteKeyOut:
    if not settings.key_database_id or not settings.notion_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Missing key database config", "message": "Set KEY_DB and NOTION_API_KEY in .env"},
        )

    key = payload.key.strip() if isinstance(payload.key, str) else ""
    if not key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Missing key", "message": "请输入投票密码。"},
        )

    try:
        key_id = await verify_vote_key(client, resolver, settings.key_database_id, key, retry_policy=resolver.retry_policy)
    except InvalidKeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Invalid key", "message": str(exc)},
        ) from exc
    except KeyAlreadyUsedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Key used", "message": str(exc)},
        ) from exc
    except (NotionAPIError, VoteRelayError) as exc:
        logger.error("Key validation error: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Key validation failed", "message": str(exc)},
        ) from exc

    return VoteKeyOut(key_id=key_id)
