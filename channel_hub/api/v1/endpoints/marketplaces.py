from fastapi import APIRouter, HTTPException

from channel_hub.marketplaces import registry
from channel_hub.marketplaces.results import UnsupportedMarketplaceError
from channel_hub.schemas.marketplace import MarketplaceOut

router = APIRouter()


def _describe(name: str) -> MarketplaceOut:
    return MarketplaceOut(
        **registry.marketplace_requirements(name),
        capabilities=registry.marketplace_capabilities(name),
    )


@router.get("/marketplaces", response_model=list[MarketplaceOut])
async def list_marketplaces() -> list[MarketplaceOut]:
    return [_describe(name) for name in registry.supported_marketplaces()]


@router.get("/marketplaces/{name}", response_model=MarketplaceOut)
async def get_marketplace(name: str) -> MarketplaceOut:
    try:
        return _describe(name)
    except UnsupportedMarketplaceError as e:
        raise HTTPException(status_code=404, detail=str(e))
