import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from channel_hub.core.config import settings
import channel_hub.models  # noqa: F401  # ensures Models are registered
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.services.discovery import FieldDiscoveryService

log = logging.getLogger(__name__)


async def _with_service(fn: Callable[[FieldDiscoveryService], Awaitable[Any]]) -> Any:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with MarketplaceClient() as client, Session() as db:
            return await fn(FieldDiscoveryService(db, client))
    finally:
        await engine.dispose()


async def _discover_account(service: FieldDiscoveryService, account_id: str) -> dict:
    account = (
        await service.session.execute(select(MarketplaceAccount).where(MarketplaceAccount.id == account_id))
    ).scalar_one_or_none()
    if not account:
        log.warning("discovery skipped, account %s not found", account_id)
        return {"success": False, "error": f"Account {account_id} not found"}
    return (await service.discover_channel_fields(account)).to_dict()


@celery.task(name="worker.tasks.discover_all_channels")
def discover_all_channels() -> dict:
    return asyncio.run(_with_service(lambda s: s.discover_all_channels()))


@celery.task(name="worker.tasks.discover_account")
def discover_account(account_id: str) -> dict:
    return asyncio.run(_with_service(lambda s: _discover_account(s, account_id)))


@celery.task(name="worker.tasks.sync_outdated_fields")
def sync_outdated_fields(stale_days: int | None = None) -> dict:
    return asyncio.run(_with_service(lambda s: s.sync_outdated_fields(stale_days)))


@celery.task(name="worker.tasks.sync_outdated_value_lists")
def sync_outdated_value_lists(stale_days: int | None = None) -> dict:
    return asyncio.run(_with_service(lambda s: s.sync_outdated_value_lists(stale_days)))
