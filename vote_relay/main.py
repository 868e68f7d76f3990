from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vote_relay.api.router import api_router
from vote_relay.core.config import get_settings
from vote_relay.core.telemetry import setup_telemetry, shutdown_telemetry, trace_request
from vote_relay.services.job_queue import get_job_queue
from vote_relay.services.job_store import get_job_store
from vote_relay.services.notion import get_notion_client
from vote_relay.services.schema_roles import get_schema_resolver
from vote_relay.services.vote_updater import get_vote_updater

settings = get_settings()
telemetry_runtime = setup_telemetry(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "vote relay starting environment=%s job_concurrency=%s update_concurrency=%s",
        settings.environment,
        settings.vote_job_concurrency,
        settings.vote_update_concurrency,
    )
    try:
        yield
    finally:
        # Only close singletons that were actually created.
        if get_job_queue.cache_info().currsize:
            await get_job_queue().shutdown()
        if get_job_store.cache_info().currsize:
            await get_job_store().close()
        if get_notion_client.cache_info().currsize:
            await get_notion_client().close()
        for factory in (get_job_queue, get_vote_updater, get_schema_resolver, get_job_store, get_notion_client):
            factory.cache_clear()
        shutdown_telemetry(telemetry_runtime)


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origins, allow_methods=["*"], allow_headers=["*"])
app.middleware("http")(trace_request)
app.include_router(api_router)
