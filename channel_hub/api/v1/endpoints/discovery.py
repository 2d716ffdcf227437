from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.api.deps import get_marketplace_client
from channel_hub.core.config import settings
from channel_hub.core.db import get_db
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.schemas.discovery import (
    AccountDiscoveryOut,
    DiscoveryHealthOut,
    DiscoveryRunOut,
    DiscoveryStatisticsOut,
    HealthReportOut,
)
from channel_hub.services.discovery import FieldDiscoveryService
from channel_hub.services.health import HealthService

router = APIRouter()


@router.post("/discovery/run", response_model=DiscoveryRunOut)
async def run_discovery(
    db: AsyncSession = Depends(get_db),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> DiscoveryRunOut:
    return DiscoveryRunOut(**await FieldDiscoveryService(db, client).discover_all_channels())


@router.post("/discovery/accounts/{account_id}", response_model=AccountDiscoveryOut)
async def discover_account(
    account_id: str,
    db: AsyncSession = Depends(get_db),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> AccountDiscoveryOut:
    account = (
        await db.execute(select(MarketplaceAccount).where(MarketplaceAccount.id == account_id))
    ).scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    if not account.is_active:
        raise HTTPException(status_code=409, detail="Account is inactive")

    result = await FieldDiscoveryService(db, client).discover_channel_fields(account)
    return AccountDiscoveryOut(**result.to_dict())


@router.post("/discovery/sync-outdated", response_model=DiscoveryRunOut)
async def sync_outdated(
    stale_days: int = Query(default=settings.discovery_stale_days, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> DiscoveryRunOut:
    return DiscoveryRunOut(**await FieldDiscoveryService(db, client).sync_outdated_fields(stale_days))


@router.get("/discovery/statistics", response_model=DiscoveryStatisticsOut)
async def discovery_statistics(
    db: AsyncSession = Depends(get_db),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> DiscoveryStatisticsOut:
    return DiscoveryStatisticsOut(**await FieldDiscoveryService(db, client).get_discovery_statistics())


@router.get("/discovery/health", response_model=DiscoveryHealthOut)
async def discovery_health(
    refresh: bool = False,
    db: AsyncSession = Depends(get_db),
) -> DiscoveryHealthOut:
    health = HealthService(db)
    overall = await health.report(refresh=refresh)
    by_channel = await health.report_by_channel(refresh=refresh)
    return DiscoveryHealthOut(
        overall=HealthReportOut(**overall.to_dict()),
        by_channel={k: HealthReportOut(**r.to_dict()) for k, r in by_channel.items()},
    )
