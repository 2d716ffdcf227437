from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.capabilities import (
    AuthMethod,
    CredentialField,
    MarketplaceCapabilities,
    RateLimits,
)
from channel_hub.marketplaces.fields import static_field
from channel_hub.marketplaces.results import AdapterResult, ConnectionTestResult, ErrorType

log = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-07"
INVENTORY_MAX_PAGES = 200

FULFILLMENT_STATUS = {
    None: "pending",
    "partial": "processing",
    "fulfilled": "shipped",
    "restocked": "cancelled",
}


def shopify_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or body.get("error")
    if isinstance(errors, str):
        return errors
    if isinstance(errors, dict):
        parts = []
        for k, v in errors.items():
            msgs = v if isinstance(v, list) else [v]
            parts.append(f"{k} {', '.join(str(m) for m in msgs)}")
        return "; ".join(parts)
    if isinstance(errors, list) and errors:
        return "; ".join(str(e) for e in errors)
    return None


def normalize_store_url(store_url: str) -> str:
    url = store_url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    if "." not in url.split("://", 1)[1]:
        # bare shop handle
        url = f"{url}.myshopify.com"
    return url


def to_standard_product(p: Mapping[str, Any]) -> dict[str, Any]:
    variants = p.get("variants") or []
    first = variants[0] if variants else {}
    return {
        "id": str(p.get("id", "")),
        "sku": first.get("sku") or "",
        "title": p.get("title") or "",
        "description": p.get("body_html") or "",
        "brand": p.get("vendor") or "",
        "category": p.get("product_type") or "",
        "price": first.get("price") or "0.00",
        "quantity": sum(int(v.get("inventory_quantity") or 0) for v in variants),
        "status": p.get("status") or "active",
        "tags": [t.strip() for t in (p.get("tags") or "").split(",") if t.strip()],
        "variants": len(variants),
        "updated_at": p.get("updated_at"),
    }


def to_standard_order(o: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": str(o.get("id", "")),
        "order_number": o.get("name") or str(o.get("order_number", "")),
        "status": o.get("financial_status") or "pending",
        "fulfillment_status": "cancelled" if o.get("cancelled_at") else FULFILLMENT_STATUS.get(o.get("fulfillment_status"), "unknown"),
        "total_amount": o.get("total_price") or "0.00",
        "currency": o.get("currency") or "",
        "customer_email": o.get("email") or "",
        "created_at": o.get("created_at"),
        "updated_at": o.get("updated_at"),
        "line_items": o.get("line_items") or [],
    }


class ShopifyAdapter(MarketplaceAdapter):
    """Shopify Admin REST API, authenticated with a custom/private app access token."""

    marketplace = "shopify"
    display_name = "Shopify"
    docs_url = "https://shopify.dev/docs/api/admin-rest"

    product_required_fields = ("title", "sku", "price")

    static_fields = (
        static_field("title", "Product Title", "TEXT", True),
        static_field("body_html", "Description", "LONG_TEXT"),
        static_field("vendor", "Vendor", "TEXT"),
        static_field("product_type", "Product Type", "TEXT"),
        static_field("tags", "Tags", "LIST_MULTIPLE_VALUES"),
        static_field("handle", "URL Handle", "TEXT"),
        static_field("published", "Published", "BOOLEAN"),
        # variant level
        static_field("sku", "SKU", "TEXT", True),
        static_field("price", "Price", "DECIMAL", True),
        static_field("compare_at_price", "Compare At Price", "DECIMAL"),
        static_field("inventory_quantity", "Inventory Quantity", "INTEGER"),
        static_field("weight", "Weight", "DECIMAL"),
        static_field("barcode", "Barcode", "TEXT"),
        static_field("option1", "Option 1 (Color)", "TEXT"),
        static_field("option2", "Option 2 (Size)", "TEXT"),
        static_field("option3", "Option 3 (Material)", "TEXT"),
    )

    @classmethod
    def requirements(cls) -> dict[str, CredentialField]:
        return {
            "store_url": CredentialField(
                "store_url", "Store URL", "Your Shopify store domain, e.g. my-store.myshopify.com", type="url",
            ),
            "access_token": CredentialField(
                "access_token", "Admin API access token", "Token of a custom app with product/order scopes", type="password",
            ),
            "api_version": CredentialField(
                "api_version", "API version", "Admin API version", required=False, default=DEFAULT_API_VERSION,
            ),
        }

    @classmethod
    def capabilities(cls) -> MarketplaceCapabilities:
        return MarketplaceCapabilities(
            marketplace=cls.marketplace,
            auth="access_token",
            discovery="static",
            products=frozenset({"create", "read", "update", "delete", "bulk", "variants"}),
            orders=frozenset({"read", "fulfill", "cancel"}),
            inventory=frozenset({"read", "update"}),
            features={"webhooks": True, "metafields": True, "collections": True},
            max_requests_per_minute=cls.rate_limits().requests_per_minute,
            supports_sandbox=False,
        )

    @classmethod
    def rate_limits(cls) -> RateLimits:
        return RateLimits(requests_per_minute=40, requests_per_second=2, burst=10)

    @classmethod
    def supported_auth_methods(cls) -> list[AuthMethod]:
        return [
            AuthMethod("private_app", "Private App Token", "Access token from a custom Shopify app", ("access_token",)),
        ]

    @classmethod
    def error_extractor(cls):
        return shopify_error_message

    @property
    def api_version(self) -> str:
        return self.setting("api_version", DEFAULT_API_VERSION)

    @property
    def base_url(self) -> str:
        return f"{normalize_store_url(self.setting('store_url', ''))}/admin/api/{self.api_version}"

    def _extra_validation(self) -> list[str]:
        if self.sandbox:
            log.info("shopify has no sandbox host; account=%s uses the live store", self.account_id)
        return []

    async def _auth_headers(self, method: str, url: str, payload: bytes) -> AdapterResult:
        return AdapterResult.ok({"X-Shopify-Access-Token": str(self.setting("access_token"))})

    async def test_connection(self) -> ConnectionTestResult:
        failure = self._config_test_failure()
        if failure is not None:
            return failure

        endpoint = f"{self.base_url}/shop.json"
        res = await self._request("GET", "/shop.json")
        shop = (res.data or {}).get("shop", {}) if res.success else {}
        return ConnectionTestResult.from_result(
            res,
            endpoint=endpoint,
            ok_message=f"Connected to Shopify store {shop.get('name', '')}".strip(),
            details={
                "shop_name": shop.get("name"),
                "domain": shop.get("domain"),
                "plan": shop.get("plan_name"),
                "currency": shop.get("currency"),
                "api_version": self.api_version,
            },
        )

    # products

    def _to_shopify(self, product: Mapping[str, Any]) -> dict[str, Any]:
        variant = {
            k: product[k]
            for k in ("sku", "price", "compare_at_price", "barcode", "weight", "option1", "option2", "option3")
            if product.get(k) is not None
        }
        if product.get("quantity") is not None:
            variant["inventory_quantity"] = product["quantity"]
        body: dict[str, Any] = {
            "title": product.get("title"),
            "body_html": product.get("description") or product.get("body_html"),
            "vendor": product.get("brand") or product.get("vendor"),
            "product_type": product.get("category") or product.get("product_type"),
            "handle": product.get("handle"),
            "published": product.get("published"),
        }
        tags = product.get("tags")
        if tags is not None:
            body["tags"] = ", ".join(tags) if isinstance(tags, (list, tuple)) else tags
        if variant:
            body["variants"] = [variant]
        return {"product": {k: v for k, v in body.items() if v is not None}}

    async def create_product(self, product: Mapping[str, Any]) -> AdapterResult:
        res = await self._request("POST", "/products.json", json_body=self._to_shopify(product))
        return res.map(lambda d: to_standard_product(d.get("product", {})))

    async def update_product(self, product_id: str, product: Mapping[str, Any]) -> AdapterResult:
        res = await self._request("PUT", f"/products/{product_id}.json", json_body=self._to_shopify(product))
        return res.map(lambda d: to_standard_product(d.get("product", {})))

    async def delete_product(self, product_id: str) -> AdapterResult:
        res = await self._request("DELETE", f"/products/{product_id}.json")
        return res.map(lambda _: {"id": str(product_id), "deleted": True})

    async def get_product(self, product_id: str) -> AdapterResult:
        res = await self._request("GET", f"/products/{product_id}.json")
        return res.map(lambda d: to_standard_product(d.get("product", {})))

    async def list_products(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        params = {
            "limit": min(int(f.get("limit", 50)), 250),
            "product_type": f.get("category"),
            "vendor": f.get("brand"),
            "since_id": f.get("cursor"),
            "status": f.get("status"),
        }
        res = await self._request("GET", "/products.json", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [to_standard_product(p) for p in d.get("products", [])]
            full = len(items) >= params["limit"]
            return {"items": items, "next": items[-1]["id"] if items and full else None}

        return res.map(_page)

    # orders

    async def list_orders(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        params = {
            "status": f.get("status", "any"),
            "limit": min(int(f.get("limit", 50)), 250),
            "created_at_min": f.get("since"),
            "fulfillment_status": f.get("fulfillment_status"),
            "since_id": f.get("cursor"),
        }
        res = await self._request("GET", "/orders.json", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [to_standard_order(o) for o in d.get("orders", [])]
            full = len(items) >= params["limit"]
            return {"items": items, "next": items[-1]["id"] if items and full else None}

        return res.map(_page)

    async def get_order(self, order_id: str) -> AdapterResult:
        res = await self._request("GET", f"/orders/{order_id}.json")
        return res.map(lambda d: to_standard_order(d.get("order", {})))

    async def fulfill_order(self, order_id: str, fulfillment: Mapping[str, Any]) -> AdapterResult:
        body = {
            "fulfillment": {
                "tracking_number": fulfillment.get("tracking_number"),
                "tracking_company": fulfillment.get("tracking_company"),
                "tracking_url": fulfillment.get("tracking_url"),
                "notify_customer": bool(fulfillment.get("notify_customer", True)),
            }
        }
        res = await self._request("POST", f"/orders/{order_id}/fulfillments.json", json_body=body)
        return res.map(lambda d: {"order_id": str(order_id), "fulfillment": d.get("fulfillment", {})})

    async def cancel_order(self, order_id: str, reason: str | None = None) -> AdapterResult:
        body = {"reason": reason or "other"}
        res = await self._request("POST", f"/orders/{order_id}/cancel.json", json_body=body)
        return res.map(lambda d: to_standard_order(d.get("order", {"id": order_id, "cancelled_at": True})))

    # inventory

    async def _variants(self, wanted: set[str]) -> AdapterResult:
        """
        Walk /products.json through its cursor (page_info) links.

        Stops early once every wanted SKU has been seen; an empty `wanted`
        means the whole catalog.
        """
        variants: list[dict[str, Any]] = []
        seen: set[str] = set()
        params: dict[str, Any] = {"limit": 250, "fields": "id,variants"}
        for _ in range(INVENTORY_MAX_PAGES):
            res = await self._request("GET", "/products.json", params=params)
            if not res.success:
                return res
            for product in (res.data or {}).get("products", []):
                for variant in product.get("variants") or []:
                    variants.append(variant)
                    if variant.get("sku"):
                        seen.add(variant["sku"])
            if wanted and wanted <= seen:
                break
            page_info = httpx.URL(res.next_link).params.get("page_info") if res.next_link else None
            if not page_info:
                break
            # Shopify rejects any other filter alongside page_info
            params = {"limit": 250, "fields": "id,variants", "page_info": page_info}
        else:
            log.warning("shopify account=%s stopped inventory scan after %s pages", self.account_id, INVENTORY_MAX_PAGES)
        return AdapterResult.ok(variants)

    async def get_inventory_levels(self, skus: list[str] | None = None) -> AdapterResult:
        wanted = set(skus or [])

        def _levels(variants: list[dict[str, Any]]) -> list[dict[str, Any]]:
            return [
                {
                    "sku": v.get("sku") or "",
                    "quantity": int(v.get("inventory_quantity") or 0),
                    "inventory_item_id": v.get("inventory_item_id"),
                }
                for v in variants
                if v.get("sku") and (not wanted or v.get("sku") in wanted)
            ]

        return (await self._variants(wanted)).map(_levels)

    async def _location_id(self) -> AdapterResult:
        configured = self.setting("location_id")
        if configured:
            return AdapterResult.ok(configured)
        res = await self._request("GET", "/locations.json")
        if not res.success:
            return res
        locations = [loc for loc in res.data.get("locations", []) if loc.get("active", True)]
        if not locations:
            return AdapterResult.fail("No active Shopify location found", error_type=ErrorType.CONFIGURATION_ERROR)
        return AdapterResult.ok(locations[0]["id"])

    async def update_inventory(self, sku: str, quantity: int) -> AdapterResult:
        levels = await self.get_inventory_levels([sku])
        if not levels.success:
            return levels
        if not levels.data:
            return AdapterResult.fail(f"SKU {sku} not found on Shopify", error_type=ErrorType.VALIDATION_ERROR, status=404)

        location = await self._location_id()
        if not location.success:
            return location

        body = {
            "location_id": location.data,
            "inventory_item_id": levels.data[0]["inventory_item_id"],
            "available": int(quantity),
        }
        # set is absolute, so repeating it is safe
        res = await self._request("POST", "/inventory_levels/set.json", json_body=body, idempotent=True)
        return res.map(lambda _: {"sku": sku, "quantity": int(quantity)})
