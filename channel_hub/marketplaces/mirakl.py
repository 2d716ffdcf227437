from __future__ import annotations

import logging
import re
from typing import Any, Mapping
from urllib.parse import urlsplit

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.capabilities import (
    AuthMethod,
    CredentialField,
    MarketplaceCapabilities,
    RateLimits,
)
from channel_hub.marketplaces.fields import DiscoveredField, DiscoveredValueList, normalize_field_type
from channel_hub.marketplaces.results import AdapterResult, ConnectionTestResult, ErrorType

log = logging.getLogger(__name__)

INVENTORY_MAX_PAGES = 200

# known operators; the api url is never filled in from here, each account carries its own
OPERATORS: dict[str, dict[str, str]] = {
    "bq": {"name": "British Quality", "currency": "GBP", "locale": "en_GB"},
    "debenhams": {"name": "Debenhams", "currency": "GBP", "locale": "en_GB"},
    "freemans": {"name": "Freemans", "currency": "GBP", "locale": "en_GB"},
}

ORDER_STATES = {
    "STAGING": "pending",
    "WAITING_ACCEPTANCE": "pending",
    "WAITING_DEBIT": "pending",
    "WAITING_DEBIT_PAYMENT": "pending",
    "SHIPPING": "processing",
    "SHIPPED": "shipped",
    "TO_COLLECT": "ready_for_pickup",
    "RECEIVED": "delivered",
    "CLOSED": "completed",
    "REFUSED": "cancelled",
    "CANCELED": "cancelled",
}

OFFER_ACTIVE_STATE = "11"

_OPERATOR_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def map_order_state(state: str | None) -> str:
    return ORDER_STATES.get(state or "", "unknown")


def mirakl_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        parts = []
        for e in errors:
            if not isinstance(e, dict):
                parts.append(str(e))
                continue
            msg = e.get("message") or e.get("code") or ""
            if e.get("field"):
                msg = f"{e['field']}: {msg}"
            parts.append(msg)
        return "; ".join(parts)
    if body.get("message"):
        return str(body["message"])
    return None


def _is_required(raw: Mapping[str, Any]) -> bool:
    if "required" in raw:
        return bool(raw["required"])
    return str(raw.get("requirement_level", "")).upper() == "REQUIRED"


def _type_parameter(raw: Mapping[str, Any], name: str) -> str | None:
    for p in raw.get("type_parameters") or []:
        if p.get("name") == name:
            return p.get("value")
    return None


def normalize_attribute(raw: Mapping[str, Any]) -> DiscoveredField:
    native_type = raw.get("type") or "TEXT"
    validations = raw.get("validations")
    rules: dict[str, Any] = {}
    if validations:
        rules["validations"] = validations
    if raw.get("default_value") not in (None, ""):
        rules["default"] = raw["default_value"]

    return DiscoveredField(
        code=str(raw["code"]),
        label=raw.get("label") or str(raw["code"]),
        field_type=normalize_field_type(native_type),
        required=_is_required(raw),
        description=raw.get("description") or None,
        category=raw.get("hierarchy_code") or None,
        value_list_code=_type_parameter(raw, "LIST_CODE") or raw.get("values_list"),
        validation_rules=rules or None,
        metadata={
            "native_type": native_type,
            "source": "mirakl_api",
            "variant": bool(raw.get("variant", False)),
            "roles": [r.get("code") for r in raw.get("roles") or [] if isinstance(r, dict)],
        },
    )


def normalize_value_list(raw: Mapping[str, Any]) -> DiscoveredValueList:
    values = raw.get("values") or []
    codes = [str(v.get("code")) for v in values if isinstance(v, dict) and v.get("code") is not None]
    labels = {str(v["code"]): v.get("label") or str(v["code"]) for v in values if isinstance(v, dict) and v.get("code") is not None}
    return DiscoveredValueList(
        code=str(raw["code"]),
        name=raw.get("label") or str(raw["code"]),
        values=codes,
        labels=labels,
        description=raw.get("description") or None,
    )


class MiraklAdapter(MarketplaceAdapter):
    """
    Mirakl operator API (seller side), one account per operator.

    Field catalog and value lists are discovered live from
    /api/products/attributes and /api/values_lists.
    """

    marketplace = "mirakl"
    display_name = "Mirakl"
    docs_url = "https://developer.mirakl.net/"

    @classmethod
    def requirements(cls) -> dict[str, CredentialField]:
        return {
            "api_url": CredentialField(
                "api_url", "API URL", "Mirakl operator API URL, e.g. https://your-operator-api.mirakl.net", type="url",
            ),
            "api_key": CredentialField("api_key", "API Key", "Mirakl shop API key", type="password"),
            "operator": CredentialField(
                "operator", "Operator", "Mirakl marketplace operator", type="select",
                options=tuple(OPERATORS) + ("custom",), default="bq",
            ),
            "shop_id": CredentialField("shop_id", "Shop ID", "Your shop id on the operator (optional)", required=False),
            "currency": CredentialField(
                "currency", "Currency", "Default currency for pricing", required=False, type="select",
                options=("GBP", "EUR", "USD"), default="GBP",
            ),
        }

    @classmethod
    def capabilities(cls) -> MarketplaceCapabilities:
        return MarketplaceCapabilities(
            marketplace=cls.marketplace,
            auth="api_key",
            discovery="dynamic",
            products=frozenset({"create", "read", "update", "delete", "bulk", "attributes", "categories"}),
            orders=frozenset({"read", "fulfill", "cancel", "accept"}),
            inventory=frozenset({"read", "update", "bulk"}),
            features={"multi_operator": True, "category_mapping": True, "value_lists": True},
            max_requests_per_minute=cls.rate_limits().requests_per_minute,
            supports_sandbox=False,
        )

    @classmethod
    def rate_limits(cls) -> RateLimits:
        return RateLimits(requests_per_minute=600, requests_per_second=10, burst=20)

    @classmethod
    def supported_auth_methods(cls) -> list[AuthMethod]:
        return [AuthMethod("api_key", "API Key", "Mirakl operator API key authentication", ("api_key",))]

    @classmethod
    def error_extractor(cls):
        return mirakl_error_message

    @property
    def operator(self) -> str:
        return str(self.setting("operator") or self.credentials.operator or "")

    @property
    def operator_config(self) -> dict[str, str]:
        return OPERATORS.get(self.operator, {"name": self.operator, "currency": "GBP", "locale": "en_GB"})

    @property
    def currency(self) -> str:
        return self.setting("currency") or self.operator_config["currency"]

    @property
    def base_url(self) -> str:
        return str(self.setting("api_url")).rstrip("/")

    def _extra_validation(self) -> list[str]:
        errors = []
        parts = urlsplit(str(self.setting("api_url")))
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append("api_url must be a valid URL")
        if not _OPERATOR_RE.match(self.operator):
            errors.append("Invalid operator specified")
        elif self.operator not in OPERATORS:
            log.info("mirakl custom operator=%s account=%s", self.operator, self.account_id)
        if self.sandbox:
            log.info("mirakl has no sandbox host; account=%s uses %s", self.account_id, self.base_url)
        return errors

    def _shop_params(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        out = dict(params or {})
        if self.setting("shop_id"):
            out["shop_id"] = self.setting("shop_id")
        return out

    async def _auth_headers(self, method: str, url: str, payload: bytes) -> AdapterResult:
        return AdapterResult.ok({"Authorization": str(self.setting("api_key"))})

    async def test_connection(self) -> ConnectionTestResult:
        failure = self._config_test_failure()
        if failure is not None:
            return failure

        endpoint = f"{self.base_url}/api/version"
        res = await self._request("GET", "/api/version")
        return ConnectionTestResult.from_result(
            res,
            endpoint=endpoint,
            ok_message=f"Connected to Mirakl operator {self.operator_config['name']}",
            details={
                "operator": self.operator,
                "operator_name": self.operator_config["name"],
                "version": (res.data or {}).get("version") if res.success else None,
            },
        )

    # discovery

    async def get_product_attributes(self) -> AdapterResult:
        res = await self._request("GET", "/api/products/attributes", params={"all_operator_attributes": "true"})
        return res.map(lambda d: [normalize_attribute(a) for a in (d or {}).get("attributes", []) if a.get("code")])

    async def get_value_lists(self) -> AdapterResult:
        res = await self._request("GET", "/api/values_lists")
        return res.map(lambda d: [normalize_value_list(v) for v in (d or {}).get("values_lists", []) if v.get("code")])

    # products (offers)

    def _to_offer(self, product: Mapping[str, Any], *, mode: str = "update") -> dict[str, Any]:
        offer: dict[str, Any] = {
            "shop_sku": product.get("sku"),
            "product_id": product.get("product_id") or product.get("ean") or product.get("sku"),
            "product_id_type": product.get("product_id_type") or ("EAN" if product.get("ean") else "SHOP_SKU"),
            "price": str(product.get("price")) if product.get("price") is not None else None,
            "quantity": product.get("quantity"),
            "state_code": str(product.get("state", OFFER_ACTIVE_STATE)),
            "description": product.get("description"),
            "update_delete": mode,
        }
        attributes = product.get("attributes") or {}
        if attributes:
            offer["offer_additional_fields"] = [{"code": k, "value": v} for k, v in attributes.items()]
        return {k: v for k, v in offer.items() if v is not None}

    def _from_offer(self, o: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "id": o.get("shop_sku") or str(o.get("offer_id", "")),
            "sku": o.get("shop_sku") or o.get("product_sku") or "",
            "offer_id": o.get("offer_id"),
            "title": o.get("product_title") or "",
            "description": o.get("description") or "",
            "brand": o.get("product_brand") or "",
            "category": o.get("category_code") or "",
            "price": str(o.get("price") or "0.00"),
            "currency": o.get("currency_iso_code") or self.currency,
            "quantity": int(o.get("quantity") or 0),
            "status": "active" if o.get("active", str(o.get("state_code")) == OFFER_ACTIVE_STATE) else "inactive",
            "updated_at": o.get("last_updated_date"),
        }

    def _from_order(self, o: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "id": o.get("order_id", ""),
            "order_number": o.get("commercial_id") or o.get("order_id", ""),
            "status": o.get("order_state") or "",
            "fulfillment_status": map_order_state(o.get("order_state")),
            "total_amount": str(o.get("total_price") or "0.00"),
            "currency": o.get("currency_iso_code") or self.currency,
            "customer_email": (o.get("customer") or {}).get("email") or "",
            "created_at": o.get("created_date") or o.get("date_created"),
            "updated_at": o.get("last_updated_date"),
            "line_items": o.get("order_lines") or [],
        }

    async def _import_offers(self, offers: list[dict[str, Any]], *, idempotent: bool | None = None) -> AdapterResult:
        return await self._request(
            "POST", "/api/offers", params=self._shop_params(), json_body={"offers": offers}, idempotent=idempotent,
        )

    async def create_product(self, product: Mapping[str, Any]) -> AdapterResult:
        res = await self._import_offers([self._to_offer(product)])
        return res.map(lambda d: {"id": product.get("sku"), "sku": product.get("sku"), "import_id": (d or {}).get("import_id")})

    async def update_product(self, product_id: str, product: Mapping[str, Any]) -> AdapterResult:
        res = await self._import_offers([self._to_offer({**product, "sku": product_id})])
        return res.map(lambda d: {"id": product_id, "sku": product_id, "import_id": (d or {}).get("import_id")})

    async def delete_product(self, product_id: str) -> AdapterResult:
        res = await self._import_offers([{"shop_sku": product_id, "update_delete": "delete"}])
        return res.map(lambda d: {"id": product_id, "deleted": True, "import_id": (d or {}).get("import_id")})

    async def get_product(self, product_id: str) -> AdapterResult:
        res = await self._request("GET", "/api/offers", params=self._shop_params({"sku": product_id, "max": 1}))
        if not res.success:
            return res
        offers = (res.data or {}).get("offers", [])
        if not offers:
            return AdapterResult.fail(
                f"Offer {product_id} not found", error_type=ErrorType.HTTP_ERROR, status=404, duration_ms=res.duration_ms,
            )
        return AdapterResult.ok(self._from_offer(offers[0]), status=res.status, duration_ms=res.duration_ms)

    async def list_products(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        limit = min(int(f.get("limit", 50)), 100)
        offset = int(f.get("cursor") or 0)
        params = self._shop_params({"max": limit, "offset": offset})
        if f.get("product_ids"):
            params["product_ids"] = ",".join(f["product_ids"])
        res = await self._request("GET", "/api/offers", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [self._from_offer(o) for o in d.get("offers", [])]
            total = int(d.get("total_count") or 0)
            return {"items": items, "next": str(offset + limit) if offset + limit < total else None, "total": total}

        return res.map(_page)

    # orders

    async def list_orders(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        limit = min(int(f.get("limit", 50)), 100)
        offset = int(f.get("cursor") or 0)
        params = self._shop_params({
            "max": limit,
            "offset": offset,
            "start_date": f.get("since"),
            "order_state_codes": f.get("status"),
        })
        res = await self._request("GET", "/api/orders", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [self._from_order(o) for o in d.get("orders", [])]
            total = int(d.get("total_count") or 0)
            return {"items": items, "next": str(offset + limit) if offset + limit < total else None, "total": total}

        return res.map(_page)

    async def get_order(self, order_id: str) -> AdapterResult:
        res = await self._request("GET", "/api/orders", params=self._shop_params({"order_ids": order_id}))
        if not res.success:
            return res
        orders = (res.data or {}).get("orders", [])
        if not orders:
            return AdapterResult.fail(f"Order {order_id} not found", error_type=ErrorType.HTTP_ERROR, status=404)
        return AdapterResult.ok(self._from_order(orders[0]), status=res.status, duration_ms=res.duration_ms)

    async def accept_order(self, order_id: str, line_ids: list[str], accepted: bool = True) -> AdapterResult:
        body = {"order_lines": [{"accepted": accepted, "id": line_id} for line_id in line_ids]}
        res = await self._request("PUT", f"/api/orders/{order_id}/accept", params=self._shop_params(), json_body=body)
        return res.map(lambda _: {"order_id": order_id, "accepted": accepted})

    async def fulfill_order(self, order_id: str, fulfillment: Mapping[str, Any]) -> AdapterResult:
        tracking = {
            "tracking_number": fulfillment.get("tracking_number") or "",
            "carrier_code": fulfillment.get("tracking_company") or "",
            "carrier_name": fulfillment.get("carrier_name") or fulfillment.get("tracking_company") or "",
            "carrier_url": fulfillment.get("tracking_url") or "",
        }
        res = await self._request("PUT", f"/api/orders/{order_id}/tracking", params=self._shop_params(), json_body=tracking)
        if not res.success:
            return res
        shipped = await self._request("PUT", f"/api/orders/{order_id}/ship", params=self._shop_params())
        return shipped.map(lambda _: {"order_id": order_id, "tracking": tracking})

    async def cancel_order(self, order_id: str, reason: str | None = None) -> AdapterResult:
        res = await self._request("PUT", f"/api/orders/{order_id}/cancel", params=self._shop_params())
        return res.map(lambda _: {"order_id": order_id, "cancelled": True})

    # inventory

    async def get_inventory_levels(self, skus: list[str] | None = None) -> AdapterResult:
        wanted = set(skus or [])
        filters: dict[str, Any] = {"limit": 100}
        if wanted:
            filters["product_ids"] = sorted(wanted)

        levels: dict[str, int] = {}
        cursor = None
        for _ in range(INVENTORY_MAX_PAGES):
            res = await self.list_products({**filters, "cursor": cursor})
            if not res.success:
                return res
            for p in res.data["items"]:
                if not wanted or p["sku"] in wanted:
                    levels.setdefault(p["sku"], p["quantity"])
            cursor = res.data["next"]
            if cursor is None or (wanted and wanted <= levels.keys()):
                break
        else:
            log.warning("mirakl account=%s stopped inventory scan after %s pages", self.account_id, INVENTORY_MAX_PAGES)
        return AdapterResult.ok([{"sku": sku, "quantity": qty} for sku, qty in levels.items()])

    async def update_inventory(self, sku: str, quantity: int) -> AdapterResult:
        # absolute quantity, safe to repeat
        res = await self._import_offers([{"shop_sku": sku, "quantity": int(quantity), "update_delete": "update"}], idempotent=True)
        return res.map(lambda _: {"sku": sku, "quantity": int(quantity)})
