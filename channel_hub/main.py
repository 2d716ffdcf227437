import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from channel_hub.api.v1.router import router as v1_router
from channel_hub.core.config import settings
from channel_hub.core.telemetry import setup_telemetry
from channel_hub.marketplaces.client import MarketplaceClient

logging.basicConfig(level=settings.log_level)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # one client per process so adapters share the http pool and rate limiter
    app.state.marketplace_client = MarketplaceClient()
    log.info("%s %s starting env=%s", settings.service_name, settings.version, settings.env)
    try:
        yield
    finally:
        await app.state.marketplace_client.aclose()


app = FastAPI(title="Channel Hub API", version=settings.version, lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
