import logging

from fastapi import APIRouter, Depends, HTTPException, status

from vote_relay.core.config import Settings, get_settings
from vote_relay.core.errors import RetryExhaustedError
from vote_relay.schemas.items import ItemsOut
from vote_relay.services.notion import NotionAPIError, NotionClient, get_notion_client, query_all_pages
from vote_relay.services.properties import normalize_page

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/notion", response_model=ItemsOut)
async def list_items(
    settings: Settings = Depends(get_settings),
    client: NotionClient = Depends(get_notion_client),
) -> ItemsOut:
    if not settings.notion_database_id or not settings.notion_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Missing Notion config",
                "message": "Set NOTION_DATABASE_ID and NOTION_API_KEY in .env",
            },
        )

    try:
        pages = await query_all_pages(client, settings.notion_database_id)
    except (NotionAPIError, RetryExhaustedError) as exc:
        logger.error("Notion API error: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Notion request failed", "message": str(exc)},
        ) from exc

    return ItemsOut(items=[normalize_page(page) for page in pages])
