from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Mapping

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.capabilities import (
    AuthMethod,
    CredentialField,
    MarketplaceCapabilities,
    RateLimits,
)
from channel_hub.marketplaces.fields import DiscoveredValueList, static_field
from channel_hub.marketplaces.results import AdapterResult, ConnectionTestResult, ErrorType

log = logging.getLogger(__name__)

PRODUCTION_HOST = "https://api.ebay.com"
SANDBOX_HOST = "https://api.sandbox.ebay.com"
OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"

# refresh a little before eBay says the token expires
TOKEN_SKEW_SECONDS = 60

CONDITIONS = (
    ("NEW", "New"),
    ("LIKE_NEW", "Like New"),
    ("NEW_OTHER", "New other (see details)"),
    ("NEW_WITH_DEFECTS", "New with defects"),
    ("CERTIFIED_REFURBISHED", "Certified - Refurbished"),
    ("SELLER_REFURBISHED", "Seller refurbished"),
    ("USED_EXCELLENT", "Used"),
    ("USED_VERY_GOOD", "Very Good"),
    ("USED_GOOD", "Good"),
    ("USED_ACCEPTABLE", "Acceptable"),
    ("FOR_PARTS_OR_NOT_WORKING", "For parts or not working"),
)

ORDER_STATUS = {
    "NOT_STARTED": "pending",
    "IN_PROGRESS": "processing",
    "FULFILLED": "shipped",
}


def ebay_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    if body.get("error_description"):
        return str(body["error_description"])
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(
            f"{e.get('errorId', '')} {e.get('longMessage') or e.get('message') or ''}".strip()
            for e in errors if isinstance(e, dict)
        )
    return None


def to_standard_product(sku: str, item: Mapping[str, Any]) -> dict[str, Any]:
    product = item.get("product") or {}
    availability = (item.get("availability") or {}).get("shipToLocationAvailability") or {}
    return {
        "id": sku,
        "sku": sku,
        "title": product.get("title") or "",
        "description": product.get("description") or "",
        "brand": product.get("brand") or "",
        "condition": item.get("condition") or "",
        "quantity": int(availability.get("quantity") or 0),
        "status": "active",
    }


def to_standard_order(o: Mapping[str, Any]) -> dict[str, Any]:
    total = (o.get("pricingSummary") or {}).get("total") or {}
    buyer = o.get("buyer") or {}
    return {
        "id": o.get("orderId", ""),
        "order_number": o.get("legacyOrderId") or o.get("orderId", ""),
        "status": o.get("orderPaymentStatus") or "pending",
        "fulfillment_status": "cancelled"
        if (o.get("cancelStatus") or {}).get("cancelState") == "CANCELED"
        else ORDER_STATUS.get(o.get("orderFulfillmentStatus", ""), "unknown"),
        "total_amount": total.get("value") or "0.00",
        "currency": total.get("currency") or "",
        "customer_email": (buyer.get("buyerRegistrationAddress") or {}).get("email") or "",
        "created_at": o.get("creationDate"),
        "updated_at": o.get("lastModifiedDate"),
        "line_items": o.get("lineItems") or [],
    }


class EbayAdapter(MarketplaceAdapter):
    """
    eBay Sell APIs (Inventory, Fulfillment, Account).

    Authenticates with an OAuth application token from the client-credentials
    grant, or with a user access token when the account carries one.
    """

    marketplace = "ebay"
    display_name = "eBay"
    docs_url = "https://developer.ebay.com/api-docs/sell/static/overview.html"

    product_required_fields = ("sku", "title", "description", "price", "quantity", "condition")

    static_fields = (
        static_field("title", "Title", "TEXT", True),
        static_field("description", "Description", "LONG_TEXT", True),
        static_field("price", "Price", "DECIMAL", True),
        static_field("quantity", "Quantity", "INTEGER", True),
        static_field("condition", "Condition", "LIST", True, value_list_code="condition"),
        static_field("brand", "Brand", "TEXT"),
        static_field("mpn", "MPN", "TEXT"),
        static_field("upc", "UPC", "TEXT"),
        static_field("ean", "EAN", "TEXT"),
    )

    static_value_lists = (
        DiscoveredValueList(
            code="condition",
            name="Item Condition",
            values=[code for code, _ in CONDITIONS],
            labels=dict(CONDITIONS),
            description="eBay inventory item condition enum",
        ),
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def requirements(cls) -> dict[str, CredentialField]:
        return {
            "environment": CredentialField(
                "environment", "Environment", "eBay API environment", type="select",
                options=("sandbox", "production"), default="production",
            ),
            "client_id": CredentialField("client_id", "Client ID (App ID)", "eBay application client id"),
            "client_secret": CredentialField(
                "client_secret", "Client Secret (Cert ID)", "eBay application client secret", type="password",
            ),
            "dev_id": CredentialField("dev_id", "Developer ID", "eBay developer account id"),
            "redirect_uri": CredentialField(
                "redirect_uri", "Redirect URI (RuName)", "Only needed for user-consent flows", required=False,
            ),
        }

    @classmethod
    def capabilities(cls) -> MarketplaceCapabilities:
        return MarketplaceCapabilities(
            marketplace=cls.marketplace,
            auth="oauth2_client_credentials",
            discovery="static",
            products=frozenset({"create", "read", "update", "delete", "bulk"}),
            orders=frozenset({"read", "fulfill"}),
            inventory=frozenset({"read", "update", "bulk"}),
            features={"auctions": True, "offers": True, "item_specifics": True},
            max_requests_per_minute=cls.rate_limits().requests_per_minute,
            supports_sandbox=True,
        )

    @classmethod
    def rate_limits(cls) -> RateLimits:
        return RateLimits(requests_per_minute=5000, requests_per_second=10, burst=20)

    @classmethod
    def supported_auth_methods(cls) -> list[AuthMethod]:
        return [
            AuthMethod(
                "client_credentials", "Client Credentials",
                "OAuth 2.0 client credentials flow for application access", ("client_id", "client_secret", "dev_id"),
            ),
            AuthMethod(
                "user_token", "User Access Token",
                "OAuth user token obtained through the consent flow", ("access_token",),
            ),
        ]

    @classmethod
    def error_extractor(cls):
        return ebay_error_message

    @property
    def is_sandbox(self) -> bool:
        return self.sandbox or str(self.setting("environment", "production")).lower() == "sandbox"

    @property
    def base_url(self) -> str:
        return SANDBOX_HOST if self.is_sandbox else PRODUCTION_HOST

    @property
    def marketplace_id(self) -> str:
        return self.setting("marketplace_id", "EBAY_US")

    def _extra_validation(self) -> list[str]:
        env = str(self.setting("environment")).lower()
        if env not in ("sandbox", "production"):
            return ["environment must be 'sandbox' or 'production'"]
        return []

    async def _fetch_token(self) -> AdapterResult:
        basic = base64.b64encode(f"{self.setting('client_id')}:{self.setting('client_secret')}".encode()).decode()
        res = await self.executor.execute(
            "POST",
            f"{self.base_url}/identity/v1/oauth2/token",
            headers={"Authorization": f"Basic {basic}"},
            form={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
            # token exchange creates nothing remotely
            idempotent=True,
        )
        if not res.success:
            return res
        token = (res.data or {}).get("access_token")
        if not token:
            return AdapterResult.fail(
                "eBay token response did not include an access_token",
                error_type=ErrorType.AUTHENTICATION_FAILED,
                error_details=res.data,
            )
        self._token = token
        self._token_expires_at = time.monotonic() + int(res.data.get("expires_in", 7200)) - TOKEN_SKEW_SECONDS
        log.info("ebay token refreshed account=%s sandbox=%s", self.account_id, self.is_sandbox)
        return AdapterResult.ok(token)

    def _token_expired(self) -> bool:
        return self._token is None or time.monotonic() >= self._token_expires_at

    async def _auth_headers(self, method: str, url: str, payload: bytes) -> AdapterResult:
        user_token = self.setting("access_token")
        if user_token:
            return AdapterResult.ok({"Authorization": f"Bearer {user_token}"})

        if self._token_expired():
            async with self._token_lock:
                # another request may have refreshed while this one waited
                if self._token_expired():
                    res = await self._fetch_token()
                    if not res.success:
                        return res
        return AdapterResult.ok({
            "Authorization": f"Bearer {self._token}",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        })

    async def test_connection(self) -> ConnectionTestResult:
        failure = self._config_test_failure()
        if failure is not None:
            return failure

        endpoint = f"{self.base_url}/sell/account/v1/privilege"
        res = await self._request("GET", "/sell/account/v1/privilege")
        data = res.data if res.success else {}
        return ConnectionTestResult.from_result(
            res,
            endpoint=endpoint,
            ok_message="Connected to eBay " + ("sandbox" if self.is_sandbox else "production"),
            details={
                "environment": "sandbox" if self.is_sandbox else "production",
                "selling_limit": (data or {}).get("sellingLimit"),
                "seller_registration_completed": (data or {}).get("sellerRegistrationCompleted"),
            },
        )

    # products

    def _inventory_item(self, product: Mapping[str, Any]) -> dict[str, Any]:
        aspects = {k.capitalize(): [str(v)] for k, v in (product.get("aspects") or {}).items()}
        if product.get("brand"):
            aspects.setdefault("Brand", [str(product["brand"])])
        item_product: dict[str, Any] = {
            "title": product.get("title"),
            "description": product.get("description"),
            "brand": product.get("brand"),
            "mpn": product.get("mpn"),
            "aspects": aspects or None,
            "imageUrls": product.get("images"),
        }
        if product.get("upc"):
            item_product["upc"] = [str(product["upc"])]
        if product.get("ean"):
            item_product["ean"] = [str(product["ean"])]
        return {
            "availability": {"shipToLocationAvailability": {"quantity": int(product.get("quantity") or 0)}},
            "condition": product.get("condition") or "NEW",
            "product": {k: v for k, v in item_product.items() if v is not None},
        }

    def _offer(self, product: Mapping[str, Any]) -> dict[str, Any]:
        policies = {
            k: self.setting(k)
            for k in ("fulfillmentPolicyId", "paymentPolicyId", "returnPolicyId")
            if self.setting(k)
        }
        offer: dict[str, Any] = {
            "sku": product["sku"],
            "marketplaceId": self.marketplace_id,
            "format": "FIXED_PRICE",
            "availableQuantity": int(product.get("quantity") or 0),
            "categoryId": product.get("category_id") or product.get("category"),
            "listingDescription": product.get("description"),
            "pricingSummary": {
                "price": {"value": str(product.get("price")), "currency": product.get("currency") or self.setting("currency", "USD")},
            },
        }
        if policies:
            offer["listingPolicies"] = policies
        if self.setting("merchant_location_key"):
            offer["merchantLocationKey"] = self.setting("merchant_location_key")
        return {k: v for k, v in offer.items() if v is not None}

    async def create_product(self, product: Mapping[str, Any]) -> AdapterResult:
        sku = str(product.get("sku") or "")
        item = await self._request("PUT", f"/sell/inventory/v1/inventory_item/{sku}", json_body=self._inventory_item(product))
        if not item.success:
            return item
        offer = await self._request("POST", "/sell/inventory/v1/offer", json_body=self._offer(product))
        if not offer.success:
            return offer
        return AdapterResult.ok(
            {"id": sku, "sku": sku, "offer_id": (offer.data or {}).get("offerId")},
            status=offer.status,
            duration_ms=(item.duration_ms or 0) + (offer.duration_ms or 0),
        )

    async def update_product(self, product_id: str, product: Mapping[str, Any]) -> AdapterResult:
        res = await self._request("PUT", f"/sell/inventory/v1/inventory_item/{product_id}", json_body=self._inventory_item(product))
        return res.map(lambda _: {"id": product_id, "sku": product_id, "updated": True})

    async def delete_product(self, product_id: str) -> AdapterResult:
        res = await self._request("DELETE", f"/sell/inventory/v1/inventory_item/{product_id}")
        return res.map(lambda _: {"id": product_id, "deleted": True})

    async def get_product(self, product_id: str) -> AdapterResult:
        res = await self._request("GET", f"/sell/inventory/v1/inventory_item/{product_id}")
        return res.map(lambda d: to_standard_product(product_id, d or {}))

    async def list_products(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        limit = min(int(f.get("limit", 50)), 200)
        offset = int(f.get("cursor") or 0)
        res = await self._request("GET", "/sell/inventory/v1/inventory_item", params={"limit": limit, "offset": offset})

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [to_standard_product(i.get("sku", ""), i) for i in d.get("inventoryItems", [])]
            total = int(d.get("total") or 0)
            return {"items": items, "next": str(offset + limit) if offset + limit < total else None, "total": total}

        return res.map(_page)

    # orders

    async def list_orders(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        limit = min(int(f.get("limit", 50)), 200)
        offset = int(f.get("cursor") or 0)
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if f.get("since"):
            params["filter"] = f"creationdate:[{f['since']}..]"
        res = await self._request("GET", "/sell/fulfillment/v1/order", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [to_standard_order(o) for o in d.get("orders", [])]
            total = int(d.get("total") or 0)
            return {"items": items, "next": str(offset + limit) if offset + limit < total else None, "total": total}

        return res.map(_page)

    async def get_order(self, order_id: str) -> AdapterResult:
        res = await self._request("GET", f"/sell/fulfillment/v1/order/{order_id}")
        return res.map(lambda d: to_standard_order(d or {}))

    async def fulfill_order(self, order_id: str, fulfillment: Mapping[str, Any]) -> AdapterResult:
        body = {
            "lineItems": [
                {"lineItemId": li["line_item_id"], "quantity": int(li.get("quantity", 1))}
                for li in fulfillment.get("line_items", [])
            ],
            "shippedDate": fulfillment.get("shipped_at"),
            "shippingCarrierCode": fulfillment.get("tracking_company"),
            "trackingNumber": fulfillment.get("tracking_number"),
        }
        res = await self._request(
            "POST",
            f"/sell/fulfillment/v1/order/{order_id}/shipping_fulfillment",
            json_body={k: v for k, v in body.items() if v is not None},
        )
        return res.map(lambda d: {"order_id": order_id, "fulfillment": d or {}})

    # inventory

    async def get_inventory_levels(self, skus: list[str] | None = None) -> AdapterResult:
        if not skus:
            res = await self.list_products({"limit": 200})
            return res.map(lambda d: [{"sku": p["sku"], "quantity": p["quantity"]} for p in d["items"]])

        levels = []
        for sku in skus:
            res = await self.get_product(sku)
            if not res.success:
                return res
            levels.append({"sku": sku, "quantity": res.data["quantity"]})
        return AdapterResult.ok(levels)

    async def update_inventory(self, sku: str, quantity: int) -> AdapterResult:
        body = {"requests": [{"sku": sku, "shipToLocationAvailability": {"quantity": int(quantity)}}]}
        res = await self._request("POST", "/sell/inventory/v1/bulk_update_price_quantity", json_body=body, idempotent=True)
        if not res.success:
            return res
        responses = (res.data or {}).get("responses") or []
        bad = [r for r in responses if int(r.get("statusCode", 200)) >= 400]
        if bad:
            return AdapterResult.fail(
                ebay_error_message(bad[0]) or f"eBay rejected quantity update for {sku}",
                error_type=ErrorType.VALIDATION_ERROR,
                error_details=bad,
                status=int(bad[0].get("statusCode", 400)),
            )
        return AdapterResult.ok({"sku": sku, "quantity": int(quantity)}, status=res.status, duration_ms=res.duration_ms)
