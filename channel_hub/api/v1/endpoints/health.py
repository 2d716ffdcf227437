from fastapi import APIRouter

from channel_hub.core.config import settings
from channel_hub.schemas.common import HealthOut

router = APIRouter()


@router.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
    return HealthOut(status="ok", service=settings.service_name, version=settings.version, env=settings.env)
