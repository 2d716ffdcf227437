from __future__ import annotations

import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from urllib.parse import quote, urlsplit

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

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
LISTINGS_VERSION = "2021-08-01"
SERVICE = "execute-api"

REGIONS = {
    "NA": ("sellingpartnerapi-na.amazon.com", "us-east-1"),
    "EU": ("sellingpartnerapi-eu.amazon.com", "eu-west-1"),
    "FE": ("sellingpartnerapi-fe.amazon.com", "us-west-2"),
}

MARKETPLACE_IDS = {
    "US": "ATVPDKIKX0DER",
    "CA": "A2EUQ1WTGCTBG2",
    "MX": "A1AM78C64UM0Y8",
    "BR": "A2Q3Y263D00KWC",
    "UK": "A1F83G8C2ARO7P",
    "DE": "A1PA6795UKMFR9",
    "FR": "A13V1IB3VIYZZH",
    "IT": "APJ6JRA9NG5V4",
    "ES": "A1RKKUPIHCS9HS",
    "NL": "A1805IZSGTT6HS",
    "SE": "A2NODRKZP88ZB9",
    "PL": "A1C3SOZRARQ6R3",
    "TR": "A33AVAJ2PDY3EV",
    "AE": "A2VIGQ35RCS4UG",
    "IN": "A21TJRUUN4KGV",
    "JP": "A1VC38T7YXB528",
    "AU": "A39IBJ37TRP1C6",
    "SG": "A19VAU5U5O7RUS",
}

ORDER_STATUS = {
    "Pending": "pending",
    "PendingAvailability": "pending",
    "Unshipped": "processing",
    "PartiallyShipped": "processing",
    "Shipped": "shipped",
    "InvoiceUnconfirmed": "shipped",
    "Canceled": "cancelled",
    "Unfulfillable": "cancelled",
}

TOKEN_SKEW_SECONDS = 60


def amazon_error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    if body.get("error_description"):
        return str(body["error_description"])
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(f"{e.get('code', '')}: {e.get('message', '')}".strip(": ") for e in errors if isinstance(e, dict))
    return None


def _sign(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def canonical_query(params: Mapping[str, Any] | None) -> str:
    if not params:
        return ""
    pairs = sorted(
        (quote(str(k), safe="-_.~"), quote(str(v), safe="-_.~"))
        for k, v in params.items()
        if v is not None
    )
    return "&".join(f"{k}={v}" for k, v in pairs)


def sigv4_headers(
    *,
    method: str,
    url: str,
    payload: bytes,
    access_key: str,
    secret_key: str,
    region: str,
    service: str = SERVICE,
    extra_headers: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> dict[str, str]:
    """
    AWS Signature Version 4 headers for one request.
    `url` must already carry its canonical (sorted, RFC 3986 encoded) query string.
    """
    now = now or datetime.now(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")

    parts = urlsplit(url)
    headers = {"host": parts.netloc, "x-amz-date": amz_date}
    for k, v in (extra_headers or {}).items():
        headers[k.lower()] = v.strip()

    signed_headers = ";".join(sorted(headers))
    canonical_headers = "".join(f"{k}:{headers[k]}\n" for k in sorted(headers))
    payload_hash = hashlib.sha256(payload).hexdigest()

    canonical_request = "\n".join([
        method.upper(),
        quote(parts.path or "/", safe="/-_.~"),
        parts.query,
        canonical_headers,
        signed_headers,
        payload_hash,
    ])

    scope = f"{date_stamp}/{region}/{service}/aws4_request"
    string_to_sign = "\n".join([
        "AWS4-HMAC-SHA256",
        amz_date,
        scope,
        hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
    ])

    k_date = _sign(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _sign(k_date, region)
    k_service = _sign(k_region, service)
    k_signing = _sign(k_service, "aws4_request")
    signature = hmac.new(k_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    out = {k: v for k, v in headers.items() if k != "host"}
    out["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key}/{scope}, SignedHeaders={signed_headers}, Signature={signature}"
    )
    return out


def to_standard_order(o: Mapping[str, Any]) -> dict[str, Any]:
    total = o.get("OrderTotal") or {}
    return {
        "id": o.get("AmazonOrderId", ""),
        "order_number": o.get("AmazonOrderId", ""),
        "status": o.get("OrderStatus") or "Pending",
        "fulfillment_status": ORDER_STATUS.get(o.get("OrderStatus", ""), "unknown"),
        "total_amount": total.get("Amount") or "0.00",
        "currency": total.get("CurrencyCode") or "",
        "customer_email": (o.get("BuyerInfo") or {}).get("BuyerEmail") or "",
        "created_at": o.get("PurchaseDate"),
        "updated_at": o.get("LastUpdateDate"),
        "line_items": [],
    }


def to_standard_listing(sku: str, item: Mapping[str, Any]) -> dict[str, Any]:
    summary = (item.get("summaries") or [{}])[0]
    availability = (item.get("fulfillmentAvailability") or [{}])[0]
    return {
        "id": sku,
        "sku": sku,
        "asin": summary.get("asin") or "",
        "title": summary.get("itemName") or "",
        "category": summary.get("productType") or "",
        "status": ",".join(summary.get("status") or []) or "unknown",
        "quantity": int(availability.get("quantity") or 0),
        "updated_at": summary.get("lastUpdatedDate"),
    }


class AmazonAdapter(MarketplaceAdapter):
    """
    Amazon Selling Partner API.

    Requests are signed with AWS SigV4 (IAM access key / secret key). When the
    account also carries LWA app credentials and a refresh token, the LWA
    access token is sent as `x-amz-access-token`.
    """

    marketplace = "amazon"
    display_name = "Amazon"
    docs_url = "https://developer-docs.amazon.com/sp-api/"

    product_required_fields = ("sku", "title", "description", "price", "quantity", "brand")

    static_fields = (
        static_field("title", "Product Title", "TEXT", True),
        static_field("description", "Product Description", "LONG_TEXT", True),
        static_field("price", "Price", "DECIMAL", True),
        static_field("quantity", "Quantity", "INTEGER", True),
        static_field("brand", "Brand", "TEXT", True),
        static_field("manufacturer", "Manufacturer", "TEXT"),
        static_field("asin", "ASIN", "TEXT"),
        static_field("upc", "UPC", "TEXT"),
        static_field("ean", "EAN", "TEXT"),
    )

    def __init__(self, *args, clock: Callable[[], datetime] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lwa_token: str | None = None
        self._lwa_expires_at = 0.0

    @classmethod
    def requirements(cls) -> dict[str, CredentialField]:
        return {
            "seller_id": CredentialField("seller_id", "Seller ID", "Merchant token of the seller account"),
            "marketplace_id": CredentialField(
                "marketplace_id", "Marketplace", "Marketplace id or country code (e.g. UK, US, DE)",
                type="select", options=tuple(MARKETPLACE_IDS),
            ),
            "access_key": CredentialField("access_key", "AWS Access Key", "IAM user access key id"),
            "secret_key": CredentialField("secret_key", "AWS Secret Key", "IAM user secret access key", type="password"),
            "region": CredentialField(
                "region", "Region", "Selling Partner API region", type="select", options=tuple(REGIONS), default="EU",
            ),
            "client_id": CredentialField("client_id", "LWA Client ID", "Login with Amazon app client id", required=False),
            "client_secret": CredentialField(
                "client_secret", "LWA Client Secret", "Login with Amazon app client secret", required=False, type="password",
            ),
            "refresh_token": CredentialField(
                "refresh_token", "LWA Refresh Token", "Refresh token from seller authorization", required=False, type="password",
            ),
        }

    @classmethod
    def capabilities(cls) -> MarketplaceCapabilities:
        return MarketplaceCapabilities(
            marketplace=cls.marketplace,
            auth="aws_sigv4",
            discovery="static",
            products=frozenset({"create", "read", "update", "delete"}),
            orders=frozenset({"read", "fulfill"}),
            inventory=frozenset({"read", "update"}),
            features={"fba": True, "product_types": True, "reports": True},
            max_requests_per_minute=cls.rate_limits().requests_per_minute,
            supports_sandbox=True,
        )

    @classmethod
    def rate_limits(cls) -> RateLimits:
        return RateLimits(requests_per_minute=200, requests_per_second=5, burst=10)

    @classmethod
    def supported_auth_methods(cls) -> list[AuthMethod]:
        return [
            AuthMethod("aws_sigv4", "AWS Signature V4", "IAM credentials used to sign each request", ("access_key", "secret_key")),
            AuthMethod(
                "lwa_refresh_token", "LWA Refresh Token", "Login with Amazon (LWA) refresh token flow",
                ("client_id", "client_secret", "refresh_token"),
            ),
        ]

    @classmethod
    def error_extractor(cls):
        return amazon_error_message

    @property
    def region(self) -> str:
        return str(self.setting("region", "")).upper()

    @property
    def aws_region(self) -> str:
        return REGIONS[self.region][1]

    @property
    def base_url(self) -> str:
        host = REGIONS[self.region][0]
        if self.sandbox:
            host = "sandbox." + host
        return f"https://{host}"

    @property
    def marketplace_id(self) -> str:
        raw = str(self.setting("marketplace_id", ""))
        return MARKETPLACE_IDS.get(raw.upper(), raw)

    @property
    def seller_id(self) -> str:
        return str(self.setting("seller_id"))

    def _extra_validation(self) -> list[str]:
        errors = []
        if self.region not in REGIONS:
            errors.append(f"region must be one of {', '.join(REGIONS)}")
        lwa = [k for k in ("client_id", "client_secret", "refresh_token") if self.setting(k)]
        if lwa and len(lwa) != 3:
            errors.append("LWA needs client_id, client_secret and refresh_token together")
        return errors

    def _url(self, path: str, params: Mapping[str, Any] | None) -> tuple[str, Mapping[str, Any] | None]:
        # the signature covers the query string, so it is encoded here rather than by httpx
        url = self.base_url + path
        query = canonical_query(params)
        return (f"{url}?{query}" if query else url), None

    async def _lwa_access_token(self) -> AdapterResult:
        if self._lwa_token and time.monotonic() < self._lwa_expires_at:
            return AdapterResult.ok(self._lwa_token)
        res = await self.executor.execute(
            "POST",
            LWA_TOKEN_URL,
            form={
                "grant_type": "refresh_token",
                "refresh_token": str(self.setting("refresh_token")),
                "client_id": str(self.setting("client_id")),
                "client_secret": str(self.setting("client_secret")),
            },
            idempotent=True,
        )
        if not res.success:
            return res
        token = (res.data or {}).get("access_token")
        if not token:
            return AdapterResult.fail(
                "LWA response did not include an access_token",
                error_type=ErrorType.AUTHENTICATION_FAILED,
                error_details=res.data,
            )
        self._lwa_token = token
        self._lwa_expires_at = time.monotonic() + int(res.data.get("expires_in", 3600)) - TOKEN_SKEW_SECONDS
        return AdapterResult.ok(token)

    async def _auth_headers(self, method: str, url: str, payload: bytes) -> AdapterResult:
        extra: dict[str, str] = {}
        if self.setting("refresh_token"):
            token = await self._lwa_access_token()
            if not token.success:
                return token
            extra["x-amz-access-token"] = token.data
        if self.setting("session_token"):
            extra["x-amz-security-token"] = str(self.setting("session_token"))

        return AdapterResult.ok(sigv4_headers(
            method=method,
            url=url,
            payload=payload,
            access_key=str(self.setting("access_key")),
            secret_key=str(self.setting("secret_key")),
            region=self.aws_region,
            extra_headers=extra,
            now=self._clock(),
        ))

    async def test_connection(self) -> ConnectionTestResult:
        failure = self._config_test_failure()
        if failure is not None:
            return failure

        endpoint = f"{self.base_url}/sellers/v1/marketplaceParticipations"
        res = await self._request("GET", "/sellers/v1/marketplaceParticipations")
        participations = (res.data or {}).get("payload", []) if res.success else []
        return ConnectionTestResult.from_result(
            res,
            endpoint=endpoint,
            ok_message=f"Connected to Amazon SP-API ({self.region})",
            details={
                "region": self.region,
                "marketplace_id": self.marketplace_id,
                "marketplaces": [((p.get("marketplace") or {}).get("id")) for p in participations],
            },
        )

    # products (Listings Items API)

    def _listing_path(self, sku: str) -> str:
        return f"/listings/{LISTINGS_VERSION}/items/{self.seller_id}/{quote(str(sku), safe='')}"

    def _listing_body(self, product: Mapping[str, Any]) -> dict[str, Any]:
        mkt = self.marketplace_id

        def attr(value: Any) -> list[dict[str, Any]]:
            return [{"value": value, "marketplace_id": mkt}]

        attributes: dict[str, Any] = {
            "item_name": attr(product.get("title")),
            "product_description": attr(product.get("description")),
            "brand": attr(product.get("brand")),
            "purchasable_offer": [{
                "marketplace_id": mkt,
                "currency": product.get("currency") or self.setting("currency", "GBP"),
                "our_price": [{"schedule": [{"value_with_tax": product.get("price")}]}],
            }],
            "fulfillment_availability": [
                {"fulfillment_channel_code": "DEFAULT", "quantity": int(product.get("quantity") or 0)}
            ],
        }
        if product.get("manufacturer"):
            attributes["manufacturer"] = attr(product["manufacturer"])
        for code in ("upc", "ean"):
            if product.get(code):
                attributes["externally_assigned_product_identifier"] = [
                    {"type": code, "value": str(product[code]), "marketplace_id": mkt}
                ]
        return {
            "productType": product.get("product_type") or product.get("category") or "PRODUCT",
            "requirements": "LISTING",
            "attributes": attributes,
        }

    async def create_product(self, product: Mapping[str, Any]) -> AdapterResult:
        sku = str(product.get("sku") or "")
        # PUT replaces the whole listing for this sku
        res = await self._request(
            "PUT", self._listing_path(sku), params={"marketplaceIds": self.marketplace_id}, json_body=self._listing_body(product),
        )
        return res.map(lambda d: {"id": sku, "sku": sku, "status": (d or {}).get("status"), "submission_id": (d or {}).get("submissionId")})

    async def update_product(self, product_id: str, product: Mapping[str, Any]) -> AdapterResult:
        return await self.create_product({**product, "sku": product_id})

    async def delete_product(self, product_id: str) -> AdapterResult:
        res = await self._request("DELETE", self._listing_path(product_id), params={"marketplaceIds": self.marketplace_id})
        return res.map(lambda _: {"id": product_id, "deleted": True})

    async def get_product(self, product_id: str) -> AdapterResult:
        res = await self._request(
            "GET",
            self._listing_path(product_id),
            params={"marketplaceIds": self.marketplace_id, "includedData": "summaries,fulfillmentAvailability"},
        )
        return res.map(lambda d: to_standard_listing(product_id, d or {}))

    async def list_products(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        params = {
            "marketplaceIds": self.marketplace_id,
            "includedData": "summaries,fulfillmentAvailability",
            "pageSize": min(int(f.get("limit", 20)), 20),
            "pageToken": f.get("cursor"),
        }
        res = await self._request("GET", f"/listings/{LISTINGS_VERSION}/items/{self.seller_id}", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            items = [to_standard_listing(i.get("sku", ""), i) for i in d.get("items", [])]
            return {"items": items, "next": (d.get("pagination") or {}).get("nextToken"), "total": d.get("numberOfResults")}

        return res.map(_page)

    # orders

    async def list_orders(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        f = dict(filters or {})
        params = {
            "MarketplaceIds": self.marketplace_id,
            "CreatedAfter": f.get("since") or "2000-01-01T00:00:00Z",
            "MaxResultsPerPage": min(int(f.get("limit", 50)), 100),
            "NextToken": f.get("cursor"),
            "OrderStatuses": f.get("status"),
        }
        res = await self._request("GET", "/orders/v0/orders", params=params)

        def _page(d: Mapping[str, Any]) -> dict[str, Any]:
            payload = d.get("payload") or {}
            return {"items": [to_standard_order(o) for o in payload.get("Orders", [])], "next": payload.get("NextToken")}

        return res.map(_page)

    async def get_order(self, order_id: str) -> AdapterResult:
        res = await self._request("GET", f"/orders/v0/orders/{order_id}")
        return res.map(lambda d: to_standard_order((d or {}).get("payload") or {}))

    async def fulfill_order(self, order_id: str, fulfillment: Mapping[str, Any]) -> AdapterResult:
        body = {
            "marketplaceId": self.marketplace_id,
            "packageDetail": {
                "packageReferenceId": str(fulfillment.get("package_reference_id", "1")),
                "carrierCode": fulfillment.get("tracking_company"),
                "trackingNumber": fulfillment.get("tracking_number"),
                "shipDate": fulfillment.get("shipped_at") or self._clock().strftime("%Y-%m-%dT%H:%M:%SZ"),
                "orderItems": [
                    {"orderItemId": li["line_item_id"], "quantity": int(li.get("quantity", 1))}
                    for li in fulfillment.get("line_items", [])
                ],
            },
        }
        res = await self._request("POST", f"/orders/v0/orders/{order_id}/shipmentConfirmation", json_body=body)
        return res.map(lambda _: {"order_id": order_id, "confirmed": True})

    # inventory

    async def get_inventory_levels(self, skus: list[str] | None = None) -> AdapterResult:
        params = {
            "details": "true",
            "granularityType": "Marketplace",
            "granularityId": self.marketplace_id,
            "marketplaceIds": self.marketplace_id,
            "sellerSkus": ",".join(skus) if skus else None,
        }
        res = await self._request("GET", "/fba/inventory/v1/summaries", params=params)
        return res.map(lambda d: [
            {"sku": s.get("sellerSku", ""), "quantity": int(s.get("totalQuantity") or 0), "asin": s.get("asin")}
            for s in ((d or {}).get("payload") or {}).get("inventorySummaries", [])
        ])

    async def update_inventory(self, sku: str, quantity: int) -> AdapterResult:
        body = {
            "productType": "PRODUCT",
            "patches": [{
                "op": "replace",
                "path": "/attributes/fulfillment_availability",
                "value": [{"fulfillment_channel_code": "DEFAULT", "quantity": int(quantity)}],
            }],
        }
        res = await self._request(
            "PATCH", self._listing_path(sku), params={"marketplaceIds": self.marketplace_id}, json_body=body, idempotent=True,
        )
        return res.map(lambda _: {"sku": sku, "quantity": int(quantity)})
