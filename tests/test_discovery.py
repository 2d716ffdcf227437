from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from channel_hub.marketplaces.results import ErrorType
from channel_hub.marketplaces.shopify import ShopifyAdapter
from channel_hub.models.channel_field_definition import ChannelFieldDefinition
from channel_hub.models.channel_value_list import ChannelValueList
from channel_hub.services.discovery import DiscoveryResult, FieldDiscoveryService

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

MIRAKL_ATTRIBUTES = {
    "attributes": [
        {"code": "title", "label": "Title", "type": "TEXT", "required": True},
        {"code": "colour", "label": "Colour", "type": "LIST", "hierarchy_code": "garden",
         "type_parameters": [{"name": "LIST_CODE", "value": "colours"}]},
    ]
}
MIRAKL_LISTS = {
    "values_lists": [
        {"code": "colours", "label": "Colours", "values": [{"code": "red", "label": "Red"}]},
        {"code": "sizes", "label": "Sizes", "values": [{"code": "s"}, {"code": "m"}]},
    ]
}


def _mirakl_routes(recorder, lists_response=None):
    recorder.routes[("GET", "/api/products/attributes")] = httpx.Response(200, json=MIRAKL_ATTRIBUTES)
    recorder.routes[("GET", "/api/values_lists")] = lists_response or httpx.Response(200, json=MIRAKL_LISTS)


async def _count(session, model) -> int:
    return (await session.execute(select(func.count(model.id)))).scalar_one()


def test_result_dict_shapes():
    ok = DiscoveryResult(success=True, fields_discovered=4, value_lists_discovered=1, required_fields=1, optional_fields=3)
    assert ok.to_dict() == {
        "success": True,
        "fields_discovered": 4,
        "value_lists_discovered": 1,
        "required_fields": 1,
        "optional_fields": 3,
    }
    failed = DiscoveryResult.failed("nope", ErrorType.SERVER_ERROR)
    assert failed.to_dict() == {"success": False, "error": "nope", "error_type": "server_error"}


@pytest.mark.asyncio
async def test_shopify_discovery_stores_static_catalog(db_session, marketplace_client, shopify_account):
    svc = FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0)

    result = await svc.discover_channel_fields(shopify_account)

    assert result.to_dict() == {
        "success": True,
        "fields_discovered": 16,
        "value_lists_discovered": 0,
        "required_fields": 3,
        "optional_fields": 13,
    }
    rows = (await db_session.execute(
        select(ChannelFieldDefinition.channel_type, ChannelFieldDefinition.channel_subtype, ChannelFieldDefinition.category)
        .distinct()
    )).all()
    assert rows == [("shopify", "main-store", "")]


@pytest.mark.asyncio
async def test_rediscovery_is_idempotent(db_session, marketplace_client, shopify_account):
    await FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0).discover_channel_fields(shopify_account)
    later = T0 + timedelta(days=3)
    await FieldDiscoveryService(db_session, marketplace_client, clock=lambda: later).discover_channel_fields(shopify_account)

    assert await _count(db_session, ChannelFieldDefinition) == 16
    discovered, verified = (await db_session.execute(
        select(ChannelFieldDefinition.discovered_at, ChannelFieldDefinition.last_verified_at)
        .where(ChannelFieldDefinition.field_code == "title")
    )).one()
    assert discovered.replace(tzinfo=None) == T0.replace(tzinfo=None)
    assert verified.replace(tzinfo=None) == later.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_mirakl_rediscovery_updates_value_lists_in_place(db_session, marketplace_client, mirakl_account, recorder):
    _mirakl_routes(recorder)
    await FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0).discover_channel_fields(mirakl_account)
    fields_after_first = await _count(db_session, ChannelFieldDefinition)
    later = T0 + timedelta(days=2)

    again = await FieldDiscoveryService(db_session, marketplace_client, clock=lambda: later).discover_channel_fields(
        mirakl_account
    )

    assert again.success is True
    assert await _count(db_session, ChannelValueList) == 2
    assert await _count(db_session, ChannelFieldDefinition) == fields_after_first
    rows = (await db_session.execute(
        select(ChannelValueList.list_code, ChannelValueList.values_count, ChannelValueList.last_synced_at)
        .order_by(ChannelValueList.list_code)
    )).all()
    assert [(code, count) for code, count, _ in rows] == [("colours", 1), ("sizes", 2)]
    assert all(synced.replace(tzinfo=None) == later.replace(tzinfo=None) for _, _, synced in rows)


@pytest.mark.asyncio
async def test_one_crashing_account_does_not_stop_the_run(db_session, marketplace_client, make_account, monkeypatch):
    creds = {"store_url": "s.myshopify.com", "access_token": "t"}
    first = await make_account("shopify", "store-1", credentials=creds)
    second = await make_account("shopify", "store-2", credentials=creds)
    third = await make_account("shopify", "store-3", credentials=creds)
    await make_account("shopify", "store-off", credentials=creds, is_active=False)

    original = ShopifyAdapter.get_product_attributes

    async def flaky(self):
        if self.account_id == second.id:
            raise RuntimeError("connection reset")
        return await original(self)

    monkeypatch.setattr(ShopifyAdapter, "get_product_attributes", flaky)

    out = await FieldDiscoveryService(db_session, marketplace_client, max_concurrency=2).discover_all_channels()

    assert out["processed_accounts"] == 3
    summary = out["summary"]
    assert summary["successful"] == 2
    assert summary["failed"] == 1
    assert summary["total_fields"] == 32
    assert summary["total_required_fields"] == 6
    (error,) = summary["errors"]
    assert error["account_id"] == second.id
    assert "connection reset" in error["error"]
    by_account = {r["account_id"]: r["result"] for r in out["results"]}
    assert by_account[first.id]["success"] and by_account[third.id]["success"]
    assert by_account[second.id]["error_type"] == "exception"
    assert await _count(db_session, ChannelFieldDefinition) == 32


@pytest.mark.asyncio
async def test_missing_credentials_fail_without_network(db_session, marketplace_client, make_account, recorder):
    account = await make_account("mirakl", "bq-empty", subtype="bq")

    result = await FieldDiscoveryService(db_session, marketplace_client).discover_channel_fields(account)

    assert result.success is False
    assert result.error_type is ErrorType.CONFIGURATION_ERROR
    assert result.error.startswith("Failed to get mirakl attributes: Missing required credentials")
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_mirakl_discovery_and_value_list_failure(db_session, marketplace_client, mirakl_account, recorder):
    _mirakl_routes(recorder)
    svc = FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0)

    ok = await svc.discover_channel_fields(mirakl_account)
    assert ok.to_dict()["value_lists_discovered"] == 2
    assert ok.required_fields == 1

    recorder.routes[("GET", "/api/values_lists")] = httpx.Response(503, json={"message": "maintenance"})
    failed = await svc.discover_channel_fields(mirakl_account)

    assert failed.success is False
    assert failed.error_type is ErrorType.SERVER_ERROR
    assert failed.error.startswith("Failed to get mirakl value lists:")
    statuses = (await db_session.execute(
        select(ChannelValueList.list_code, ChannelValueList.sync_status, ChannelValueList.sync_error)
        .order_by(ChannelValueList.list_code)
    )).all()
    assert [(code, status) for code, status, _ in statuses] == [("colours", "failed"), ("sizes", "failed")]
    assert all(err == failed.error for _, _, err in statuses)

    _mirakl_routes(recorder)
    resynced = await svc.sync_outdated_value_lists()
    assert resynced["processed_accounts"] == 1
    assert resynced["summary"]["successful"] == 1
    synced = (await db_session.execute(select(ChannelValueList.sync_status).distinct())).scalars().all()
    assert synced == ["synced"]


@pytest.mark.asyncio
async def test_sync_outdated_fields_only_touches_stale_channels(db_session, marketplace_client, shopify_account):
    await FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0).discover_channel_fields(shopify_account)

    fresh = FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0 + timedelta(days=10), stale_days=30)
    assert (await fresh.sync_outdated_fields())["processed_accounts"] == 0

    stale = FieldDiscoveryService(db_session, marketplace_client, clock=lambda: T0 + timedelta(days=40), stale_days=30)
    out = await stale.sync_outdated_fields()
    assert out["processed_accounts"] == 1
    assert out["results"][0]["channel"] == "shopify:main-store"

    # an explicit window overrides the service default
    assert (await stale.sync_outdated_fields(stale_days=60))["processed_accounts"] == 0


@pytest.mark.asyncio
async def test_discovery_statistics(db_session, marketplace_client, shopify_account, mirakl_account, recorder):
    _mirakl_routes(recorder)
    svc = FieldDiscoveryService(db_session, marketplace_client)
    await svc.discover_all_channels()

    stats = await svc.get_discovery_statistics()

    fields = stats["field_definitions"]
    assert fields["total_fields"] == 18
    assert fields["required_fields"] == 4
    assert fields["optional_fields"] == 14
    assert fields["needs_verification"] == 0
    assert fields["by_channel"] == {"shopify": 16, "mirakl": 2}
    lists = stats["value_lists"]
    assert lists["total_lists"] == 2
    assert lists["synced_lists"] == 2
    assert lists["total_values"] == 3
    assert lists["needs_sync"] == 0
    assert stats["sync_accounts"] == 2
    assert stats["last_discovery"] is not None
    assert stats["discovery_health"]["overall_health"]["status"] == "excellent"
