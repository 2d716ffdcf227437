from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.api.deps import get_marketplace_client
from channel_hub.core.crypto import encrypt_json
from channel_hub.core.db import get_db
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.marketplaces.registry import Marketplace
from channel_hub.marketplaces.results import UnsupportedMarketplaceError
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.schemas.account import AccountCreate, AccountOut, ConnectionTestOut
from channel_hub.services.connection_tests import connection_health, run_connection_test

router = APIRouter()


def _out(a: MarketplaceAccount) -> AccountOut:
    return AccountOut(
        id=a.id,
        name=a.name,
        display_name=a.display_name,
        marketplace_type=a.marketplace_type,
        marketplace_subtype=a.marketplace_subtype,
        channel=a.channel_label,
        settings=a.settings or {},
        is_active=a.is_active,
        last_connection_test=a.last_connection_test,
        connection_health=connection_health(a),
    )


async def _get_account(db: AsyncSession, account_id: str) -> MarketplaceAccount:
    account = (
        await db.execute(select(MarketplaceAccount).where(MarketplaceAccount.id == account_id))
    ).scalar_one_or_none()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.post("/accounts", response_model=AccountOut, status_code=201)
async def create_account(payload: AccountCreate, db: AsyncSession = Depends(get_db)) -> AccountOut:
    try:
        marketplace = Marketplace.parse(payload.marketplace_type)
    except UnsupportedMarketplaceError as e:
        raise HTTPException(status_code=422, detail=str(e))

    exists = (
        await db.execute(
            select(MarketplaceAccount.id).where(
                MarketplaceAccount.marketplace_type == marketplace.value,
                MarketplaceAccount.name == payload.name,
            )
        )
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Account name already used for this marketplace")

    account = MarketplaceAccount(
        name=payload.name,
        display_name=payload.display_name,
        marketplace_type=marketplace.value,
        marketplace_subtype=payload.marketplace_subtype,
        credentials_ciphertext=encrypt_json(payload.credentials) if payload.credentials else None,
        settings=payload.settings,
        is_active=payload.is_active,
    )
    db.add(account)
    await db.commit()
    return _out(account)


@router.get("/accounts/{account_id}", response_model=AccountOut)
async def get_account(account_id: str, db: AsyncSession = Depends(get_db)) -> AccountOut:
    return _out(await _get_account(db, account_id))


@router.post("/accounts/{account_id}/test-connection", response_model=ConnectionTestOut)
async def check_connection(
    account_id: str,
    db: AsyncSession = Depends(get_db),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> ConnectionTestOut:
    account = await _get_account(db, account_id)
    result = await run_connection_test(db, client, account)
    return ConnectionTestOut(**result.to_dict())
