import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from channel_hub.marketplaces.amazon import canonical_query, sigv4_headers
from channel_hub.marketplaces.fields import FieldType
from channel_hub.marketplaces.mirakl import MiraklAdapter
from channel_hub.marketplaces.results import ErrorType, UnsupportedMarketplaceError
from channel_hub.marketplaces.shopify import ShopifyAdapter, normalize_store_url


def test_shopify_static_catalog_is_complete():
    fields = ShopifyAdapter.static_fields
    codes = [f.code for f in fields]

    assert len(fields) == 16
    assert len(set(codes)) == 16
    assert sorted(f.code for f in fields if f.required) == ["price", "sku", "title"]
    by_code = {f.code: f for f in fields}
    assert by_code["published"].field_type is FieldType.BOOLEAN
    assert by_code["tags"].field_type is FieldType.LIST
    assert by_code["body_html"].metadata["source"] == "static_catalog"


def test_normalize_store_url():
    assert normalize_store_url("demo.myshopify.com/") == "https://demo.myshopify.com"
    assert normalize_store_url("demo") == "https://demo.myshopify.com"
    assert normalize_store_url("https://shop.example.com") == "https://shop.example.com"


@pytest.mark.asyncio
async def test_shopify_static_discovery_needs_no_network(marketplace_client, shopify_account, recorder):
    adapter = marketplace_client.adapter_for(shopify_account)

    attrs = await adapter.get_product_attributes()
    lists = await adapter.get_value_lists()

    assert attrs.success and len(attrs.data) == 16
    assert lists.success and lists.data == []
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_shopify_connection_test_sends_token(marketplace_client, shopify_account, recorder):
    recorder.routes[("GET", "/admin/api/2024-07/shop.json")] = httpx.Response(
        200, json={"shop": {"name": "Demo", "domain": "demo.example.com", "currency": "EUR"}}
    )
    adapter = marketplace_client.adapter_for(shopify_account)

    result = await adapter.test_connection()

    assert result.success is True
    assert result.message == "Connected to Shopify store Demo"
    assert result.details["currency"] == "EUR"
    assert result.status_code == 200
    assert recorder.requests[0].headers["x-shopify-access-token"] == "shpat_test_token"


@pytest.mark.asyncio
async def test_shopify_bad_token_is_authentication_failure(marketplace_client, shopify_account, recorder):
    recorder.routes[("GET", "/admin/api/2024-07/shop.json")] = httpx.Response(
        401, json={"errors": "[API] Invalid API key or access token"}
    )
    adapter = marketplace_client.adapter_for(shopify_account)

    result = await adapter.test_connection()

    assert result.success is False
    assert result.error_type is ErrorType.AUTHENTICATION_FAILED
    assert result.recommendations == ["Check your API credentials and ensure they are valid"]


@pytest.mark.asyncio
async def test_mirakl_missing_credentials_short_circuit(marketplace_client, make_account, recorder):
    account = await make_account("mirakl", "bq-empty", subtype="bq")
    adapter = marketplace_client.adapter_for(account)

    attrs = await adapter.get_product_attributes()
    conn = await adapter.test_connection()

    assert attrs.success is False
    assert attrs.error_type is ErrorType.CONFIGURATION_ERROR
    assert "api_url" in attrs.error and "api_key" in attrs.error
    assert conn.success is False
    assert conn.details["missing"] == ["api_url", "api_key"]
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_mirakl_invalid_url_is_configuration_error(marketplace_client, make_account, recorder):
    account = await make_account("mirakl", "bq-bad", subtype="bq", credentials={"api_url": "not a url", "api_key": "k"})

    res = await marketplace_client.adapter_for(account).get_value_lists()

    assert res.error_type is ErrorType.CONFIGURATION_ERROR
    assert "api_url must be a valid URL" in res.error
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_mirakl_discovery_normalizes_attributes(marketplace_client, mirakl_account, recorder):
    recorder.routes[("GET", "/api/products/attributes")] = httpx.Response(200, json={
        "attributes": [
            {"code": "colour", "label": "Colour", "type": "LIST", "required": True,
             "hierarchy_code": "garden", "type_parameters": [{"name": "LIST_CODE", "value": "colours"}]},
            {"code": "weight", "label": "Weight", "type": "DECIMAL", "requirement_level": "OPTIONAL"},
            {"label": "no code, skipped"},
        ]
    })
    recorder.routes[("GET", "/api/values_lists")] = httpx.Response(200, json={
        "values_lists": [
            {"code": "colours", "label": "Colours", "values": [{"code": "red", "label": "Red"}, {"code": "blue"}]},
        ]
    })
    adapter = marketplace_client.adapter_for(mirakl_account)

    attrs = await adapter.get_product_attributes()
    lists = await adapter.get_value_lists()

    colour, weight = attrs.data
    assert colour.required is True
    assert colour.field_type is FieldType.LIST
    assert colour.category == "garden"
    assert colour.value_list_code == "colours"
    assert weight.required is False
    assert weight.field_type is FieldType.DECIMAL

    (vl,) = lists.data
    assert vl.values == ["red", "blue"]
    assert vl.labels == {"red": "Red", "blue": "blue"}
    assert recorder.requests[0].headers["authorization"] == "mk-test-key"


@pytest.mark.asyncio
async def test_ebay_fetches_token_once_then_calls_api(marketplace_client, make_account, recorder):
    recorder.routes[("POST", "/identity/v1/oauth2/token")] = httpx.Response(
        200, json={"access_token": "v^1.1#token", "expires_in": 7200}
    )
    recorder.routes[("GET", "/sell/account/v1/privilege")] = httpx.Response(200, json={"sellerRegistrationCompleted": True})
    account = await make_account("ebay", "ebay-us", credentials={
        "environment": "sandbox", "client_id": "cid", "client_secret": "csecret", "dev_id": "dev",
    })
    adapter = marketplace_client.adapter_for(account)

    first = await adapter.test_connection()
    second = await adapter.test_connection()

    assert first.success and second.success
    assert first.details["environment"] == "sandbox"
    assert recorder.paths() == [
        "/identity/v1/oauth2/token",
        "/sell/account/v1/privilege",
        "/sell/account/v1/privilege",
    ]
    assert recorder.requests[0].url.host == "api.sandbox.ebay.com"
    assert recorder.requests[1].headers["authorization"] == "Bearer v^1.1#token"


@pytest.mark.asyncio
async def test_ebay_concurrent_calls_share_one_token_exchange(marketplace_client, make_account, recorder):
    recorder.routes[("POST", "/identity/v1/oauth2/token")] = httpx.Response(
        200, json={"access_token": "v^1.1#shared", "expires_in": 7200}
    )
    recorder.routes[("GET", "/sell/account/v1/privilege")] = httpx.Response(200, json={})
    account = await make_account("ebay", "ebay-burst", credentials={
        "environment": "sandbox", "client_id": "cid", "client_secret": "csecret", "dev_id": "dev",
    })
    adapter = marketplace_client.adapter_for(account)

    results = await asyncio.gather(*(adapter.test_connection() for _ in range(3)))

    assert all(r.success for r in results)
    assert recorder.paths().count("/identity/v1/oauth2/token") == 1
    calls = [r for r in recorder.requests if r.url.path == "/sell/account/v1/privilege"]
    assert len(calls) == 3
    assert {r.headers["authorization"] for r in calls} == {"Bearer v^1.1#shared"}


@pytest.mark.asyncio
async def test_ebay_static_condition_list(marketplace_client, make_account):
    account = await make_account("ebay", "ebay-uk", credentials={
        "environment": "production", "client_id": "c", "client_secret": "s", "dev_id": "d",
    })
    lists = await marketplace_client.adapter_for(account).get_value_lists()

    (condition,) = lists.data
    assert condition.code == "condition"
    assert "NEW" in condition.values


def test_sigv4_matches_reference_vector():
    headers = sigv4_headers(
        method="GET",
        url="https://example.amazonaws.com/",
        payload=b"",
        access_key="AKIDEXAMPLE",
        secret_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        region="us-east-1",
        service="service",
        now=datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc),
    )

    assert headers["x-amz-date"] == "20150830T123600Z"
    assert headers["Authorization"] == (
        "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20150830/us-east-1/service/aws4_request, "
        "SignedHeaders=host;x-amz-date, "
        "Signature=5fa00fa31553b73ebf1942676e86291e8372ff2a2260956d9b8aae1d763fbf31"
    )


def test_sigv4_signature_covers_payload():
    kw = dict(
        method="PUT",
        url="https://sellingpartnerapi-na.amazon.com/listings/2021-08-01/items/S1/SKU-1",
        access_key="AK",
        secret_key="SK",
        region="us-east-1",
        now=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    a = sigv4_headers(payload=b'{"a":1}', **kw)["Authorization"]
    b = sigv4_headers(payload=b'{"a":2}', **kw)["Authorization"]
    assert a != b
    assert sigv4_headers(payload=b'{"a":1}', **kw)["Authorization"] == a


def test_canonical_query_sorts_and_encodes():
    assert canonical_query({"b": "x y", "a": "1", "skip": None}) == "a=1&b=x%20y"
    assert canonical_query(None) == ""


@pytest.mark.asyncio
async def test_amazon_requests_are_signed(marketplace_client, make_account, recorder):
    recorder.routes[("GET", "/sellers/v1/marketplaceParticipations")] = httpx.Response(
        200, json={"payload": [{"marketplace": {"id": "ATVPDKIKX0DER"}}]}
    )
    account = await make_account("amazon", "amazon-us", credentials={
        "seller_id": "S1", "marketplace_id": "US", "access_key": "AK", "secret_key": "SK", "region": "na",
    })

    result = await marketplace_client.adapter_for(account).test_connection()

    assert result.success is True
    assert result.details["marketplace_id"] == "ATVPDKIKX0DER"
    assert result.details["marketplaces"] == ["ATVPDKIKX0DER"]
    req = recorder.requests[0]
    assert req.url.host == "sellingpartnerapi-na.amazon.com"
    assert req.headers["authorization"].startswith("AWS4-HMAC-SHA256 Credential=AK/")
    assert "x-amz-date" in req.headers


def test_mirakl_requirements_metadata():
    reqs = MiraklAdapter.requirements()
    assert [k for k, f in reqs.items() if f.required] == ["api_url", "api_key", "operator"]


def test_registry_lists_four_marketplaces(marketplace_client):
    assert marketplace_client.supported_marketplaces() == ["amazon", "ebay", "mirakl", "shopify"]
    reqs = marketplace_client.requirements("Shopify")
    assert reqs["marketplace"] == "shopify"
    assert reqs["fields"]["access_token"]["required"] is True
    caps = marketplace_client.capabilities("mirakl")
    assert caps["rate_limits"]["burst"] == 20


def test_unknown_marketplace_is_rejected(marketplace_client):
    with pytest.raises(UnsupportedMarketplaceError):
        marketplace_client.for_marketplace("etsy")
    with pytest.raises(UnsupportedMarketplaceError):
        marketplace_client.requirements("etsy")


def test_builder_needs_matching_account(marketplace_client, shopify_account):
    with pytest.raises(ValueError, match="An account is required"):
        marketplace_client.for_marketplace("shopify").build()
    with pytest.raises(ValueError, match="not ebay"):
        marketplace_client.for_marketplace("ebay").with_account(shopify_account).build()


def test_builder_steps_do_not_mutate(marketplace_client, shopify_account):
    base = marketplace_client.for_marketplace("shopify")
    sandboxed = base.with_account(shopify_account).with_sandbox()

    assert base.account is None and base.sandbox is None
    adapter = sandboxed.build()
    assert adapter.sandbox is True
    assert adapter.account_id == shopify_account.id
