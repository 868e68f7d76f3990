from fastapi import APIRouter

from vote_relay.api.routes import health, items, keys, votes

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(items.router, prefix="/api", tags=["public"])
api_router.include_router(keys.router, prefix="/api", tags=["voting"])
api_router.include_router(votes.router, prefix="/api", tags=["voting"])
