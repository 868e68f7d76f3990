import logging

from fastapi import APIRouter, Depends, HTTPException, status

from vote_relay.core.config import Settings, get_settings
from vote_relay.core.errors import QueueClosedError, StorageError
from vote_relay.schemas.votes import VoteSubmissionAccepted, VoteSubmissionIn
from vote_relay.services.aggregator import sanitize_votes
from vote_relay.services.job_queue import VoteJobQueue, get_job_queue

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/votes", response_model=VoteSubmissionAccepted)
async def submit_votes(
    payload: VoteSubmissionIn,
    settings: Settings = Depends(get_settings),
    queue: VoteJobQueue = Depends(get_job_queue),
) -> VoteSubmissionAccepted:
    if not settings.notion_database_id or not settings.notion_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Missing Notion config",
                "message": "Set NOTION_DATABASE_ID and NOTION_API_KEY in .env",
            },
        )

    key_id = payload.key_id if isinstance(payload.key_id, str) else ""
    if settings.key_database_id and not key_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Missing vote key", "message": "投票前需要输入密码。"},
        )

    votes = sanitize_votes(payload.votes)
    results = payload.results if payload.results is not None else {"votes": [vote.model_dump() for vote in votes]}

    try:
        job_id = await queue.submit(key_id or None, votes, results)
    except QueueClosedError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Vote queue closed", "message": str(exc)},
        ) from exc
    except StorageError as exc:
        logger.error("Vote record save error: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Vote record save failed", "message": str(exc)},
        ) from exc

    return VoteSubmissionAccepted(job_id=job_id)
