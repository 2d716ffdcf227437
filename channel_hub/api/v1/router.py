from fastapi import APIRouter

from channel_hub.api.v1.endpoints.health import router as health_router
from channel_hub.api.v1.endpoints.marketplaces import router as marketplaces_router
from channel_hub.api.v1.endpoints.accounts import router as accounts_router
from channel_hub.api.v1.endpoints.discovery import router as discovery_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(marketplaces_router, tags=["marketplaces"])
router.include_router(accounts_router, tags=["accounts"])
router.include_router(discovery_router, tags=["discovery"])
