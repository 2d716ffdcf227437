import httpx
import pytest

SHOP_PATH = "/admin/api/2024-07/shop.json"


@pytest.mark.asyncio
async def test_list_marketplaces(client):
    r = await client.get("/v1/marketplaces")
    assert r.status_code == 200, r.text
    body = r.json()
    assert [m["marketplace"] for m in body] == ["amazon", "ebay", "mirakl", "shopify"]
    shopify = next(m for m in body if m["marketplace"] == "shopify")
    assert shopify["capabilities"]["discovery"] == "static"
    assert "store_url" in shopify["fields"]


@pytest.mark.asyncio
async def test_unknown_marketplace_is_404(client):
    r = await client.get("/v1/marketplaces/etsy")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_account_lifecycle_and_connection_test(client, recorder):
    recorder.routes[("GET", SHOP_PATH)] = httpx.Response(200, json={"shop": {"name": "Demo", "currency": "GBP"}})

    r = await client.post("/v1/accounts", json={
        "name": "main-store",
        "marketplace_type": "Shopify",
        "credentials": {"store_url": "demo.myshopify.com", "access_token": "shpat_api"},
    })
    assert r.status_code == 201, r.text
    account = r.json()
    assert account["marketplace_type"] == "shopify"
    assert account["channel"] == "shopify:main-store"
    assert "credentials" not in account
    assert account["connection_health"]["status"] == "unknown"

    dup = await client.post("/v1/accounts", json={"name": "main-store", "marketplace_type": "shopify"})
    assert dup.status_code == 409

    r = await client.post(f"/v1/accounts/{account['id']}/test-connection")
    assert r.status_code == 200, r.text
    assert r.json()["success"] is True
    assert r.json()["message"] == "Connected to Shopify store Demo"
    assert recorder.requests[0].headers["x-shopify-access-token"] == "shpat_api"

    recorder.routes[("GET", SHOP_PATH)] = httpx.Response(401, json={"errors": "bad token"})
    r = await client.post(f"/v1/accounts/{account['id']}/test-connection")
    assert r.json()["error_type"] == "authentication_failed"

    r = await client.get(f"/v1/accounts/{account['id']}")
    health = r.json()["connection_health"]
    assert health["status"] == "failing"
    assert health["tests"] == 2
    assert health["success_rate"] == 50.0
    assert r.json()["last_connection_test"] is not None


@pytest.mark.asyncio
async def test_account_validation(client):
    r = await client.post("/v1/accounts", json={"name": "x", "marketplace_type": "etsy"})
    assert r.status_code == 422
    r = await client.get("/v1/accounts/mka_missing")
    assert r.status_code == 404
    r = await client.post("/v1/accounts/mka_missing/test-connection")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_discovery_endpoints(client, shopify_account, make_account):
    inactive = await make_account("shopify", "parked", is_active=False)

    r = await client.post("/v1/discovery/run")
    assert r.status_code == 200, r.text
    run = r.json()
    assert run["processed_accounts"] == 1
    assert run["summary"]["total_fields"] == 16
    assert run["results"][0]["result"]["required_fields"] == 3

    r = await client.post(f"/v1/discovery/accounts/{shopify_account.id}")
    assert r.status_code == 200
    assert r.json()["fields_discovered"] == 16

    assert (await client.post(f"/v1/discovery/accounts/{inactive.id}")).status_code == 409
    assert (await client.post("/v1/discovery/accounts/mka_missing")).status_code == 404

    r = await client.post("/v1/discovery/sync-outdated", params={"stale_days": 30})
    assert r.status_code == 200
    assert r.json()["processed_accounts"] == 0
    assert (await client.post("/v1/discovery/sync-outdated", params={"stale_days": 0})).status_code == 422

    r = await client.get("/v1/discovery/statistics")
    assert r.status_code == 200, r.text
    stats = r.json()
    assert stats["field_definitions"]["total_fields"] == 16
    assert stats["sync_accounts"] == 1
    assert stats["last_discovery"] is not None

    r = await client.get("/v1/discovery/health", params={"refresh": True})
    assert r.status_code == 200
    health = r.json()
    assert health["overall"]["field_health"]["health_score"] == 100.0
    assert health["overall"]["overall_health"]["status"] == "fair"
    assert list(health["by_channel"]) == ["shopify"]
