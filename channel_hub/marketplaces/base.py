from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, ClassVar, Mapping

import httpx

from channel_hub.marketplaces.capabilities import (
    AuthMethod,
    ConfigValidation,
    CredentialField,
    MarketplaceCapabilities,
    RateLimits,
)
from channel_hub.marketplaces.credentials import MarketplaceCredentials
from channel_hub.marketplaces.executor import ErrorExtractor, HttpMethod, RequestExecutor
from channel_hub.marketplaces.fields import DiscoveredField, DiscoveredValueList
from channel_hub.marketplaces.results import AdapterResult, ConnectionTestResult, ErrorType
from channel_hub.services.rate_limit import RateLimiter
from channel_hub.services.retry import RetryPolicy

log = logging.getLogger(__name__)


class MarketplaceAdapter(ABC):
    """
    One marketplace behind the common capability interface.

    Static metadata (requirements, capabilities, rate limits) is available on
    the class without credentials. Instances are bound to one account's
    credentials and share the client's HTTP pool and rate limiter.

    Ordinary failures (missing credentials, HTTP errors, transport errors)
    come back as AdapterResult(success=False); nothing here raises for them.
    """

    marketplace: ClassVar[str]
    display_name: ClassVar[str]
    docs_url: ClassVar[str]

    # fixed-schema marketplaces declare their catalog here
    static_fields: ClassVar[tuple[DiscoveredField, ...]] = ()
    static_value_lists: ClassVar[tuple[DiscoveredValueList, ...]] = ()

    # keys a product payload must carry when validation is on
    product_required_fields: ClassVar[tuple[str, ...]] = ("sku", "title")

    def __init__(
        self,
        credentials: MarketplaceCredentials,
        *,
        http: httpx.AsyncClient,
        limiter: RateLimiter,
        retry: RetryPolicy | None = None,
        sandbox: bool = False,
        config: Mapping[str, Any] | None = None,
        account_id: str | None = None,
        timeout_seconds: float = 30.0,
        version: str = "0.1.0",
    ):
        self.credentials = credentials
        self.sandbox = sandbox
        self.config = MappingProxyType(dict(config or {}))
        self.account_id = account_id
        self.executor = RequestExecutor(
            marketplace=self.marketplace,
            http=http,
            limiter=limiter,
            requests_per_minute=self.rate_limits().requests_per_minute,
            retry=retry,
            timeout_seconds=timeout_seconds,
            account_id=account_id,
            error_extractor=self.error_extractor(),
            version=version,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} account={self.account_id} sandbox={self.sandbox}>"

    # static metadata

    @classmethod
    @abstractmethod
    def requirements(cls) -> dict[str, CredentialField]:
        ...

    @classmethod
    @abstractmethod
    def capabilities(cls) -> MarketplaceCapabilities:
        ...

    @classmethod
    @abstractmethod
    def rate_limits(cls) -> RateLimits:
        ...

    @classmethod
    def supported_auth_methods(cls) -> list[AuthMethod]:
        return []

    @classmethod
    def required_credential_keys(cls) -> list[str]:
        return [k for k, f in cls.requirements().items() if f.required]

    @classmethod
    def error_extractor(cls) -> ErrorExtractor | None:
        return None

    # configuration

    def setting(self, key: str, default: Any = None) -> Any:
        """Builder config wins over the account's credential bag and settings."""
        if key in self.config and self.config[key] not in (None, ""):
            return self.config[key]
        return self.credentials.get(key, default)

    def validate_configuration(self) -> ConfigValidation:
        missing = [k for k in self.required_credential_keys() if self.setting(k) is None]
        errors = [] if missing else self._extra_validation()
        return ConfigValidation(valid=not missing and not errors, missing=missing, errors=errors)

    def _extra_validation(self) -> list[str]:
        return []

    def _config_failure(self) -> AdapterResult | None:
        v = self.validate_configuration()
        if v.valid:
            return None
        log.info("marketplace=%s account=%s invalid configuration missing=%s errors=%s",
                 self.marketplace, self.account_id, v.missing, v.errors)
        return AdapterResult.configuration_error(v.missing, errors=v.errors)

    # transport

    @property
    @abstractmethod
    def base_url(self) -> str:
        ...

    async def _auth_headers(self, method: str, url: str, payload: bytes) -> AdapterResult:
        """Return AdapterResult.ok(headers) or a failure that aborts the call."""
        return AdapterResult.ok({})

    def _url(self, path: str, params: Mapping[str, Any] | None) -> tuple[str, Mapping[str, Any] | None]:
        return self.base_url.rstrip("/") + path, params

    async def _request(
        self,
        method: HttpMethod,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        idempotent: bool | None = None,
    ) -> AdapterResult:
        failure = self._config_failure()
        if failure is not None:
            return failure

        url, query = self._url(path, params)
        payload = json.dumps(json_body, separators=(",", ":"), default=str).encode("utf-8") if json_body is not None else b""
        auth = await self._auth_headers(method, url, payload)
        if not auth.success:
            return auth

        return await self.executor.execute(
            method,
            url,
            headers=auth.data,
            params=query,
            content=payload or None,
            idempotent=idempotent,
        )

    # connection

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        ...

    def _config_test_failure(self) -> ConnectionTestResult | None:
        v = self.validate_configuration()
        if v.valid:
            return None
        message = "Missing required credentials: " + ", ".join(v.missing) if v.missing else "; ".join(v.errors)
        return ConnectionTestResult(
            success=False,
            message=message,
            details={"missing": v.missing, "errors": v.errors},
            recommendations=["Complete the account credentials before connecting"],
            error_type=ErrorType.CONFIGURATION_ERROR,
        )

    # discovery

    async def get_product_attributes(self) -> AdapterResult:
        failure = self._config_failure()
        if failure is not None:
            return failure
        return AdapterResult.ok(list(self.static_fields))

    async def get_value_lists(self) -> AdapterResult:
        failure = self._config_failure()
        if failure is not None:
            return failure
        return AdapterResult.ok(list(self.static_value_lists))

    # products

    def validate_product(self, product: Mapping[str, Any]) -> list[str]:
        errors = [f"{k} is required" for k in self.product_required_fields if product.get(k) in (None, "")]
        for k in ("price", "compare_at_price"):
            if product.get(k) in (None, ""):
                continue
            try:
                if Decimal(str(product[k])) < 0:
                    errors.append(f"{k} must not be negative")
            except InvalidOperation:
                errors.append(f"{k} must be a number")
        qty = product.get("quantity")
        if qty is not None and (not isinstance(qty, int) or qty < 0):
            errors.append("quantity must be a non-negative integer")
        return errors

    async def create_product(self, product: Mapping[str, Any]) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "create_product")

    async def update_product(self, product_id: str, product: Mapping[str, Any]) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "update_product")

    async def delete_product(self, product_id: str) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "delete_product")

    async def get_product(self, product_id: str) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "get_product")

    async def list_products(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "list_products")

    # orders

    async def list_orders(self, filters: Mapping[str, Any] | None = None) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "list_orders")

    async def get_order(self, order_id: str) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "get_order")

    async def fulfill_order(self, order_id: str, fulfillment: Mapping[str, Any]) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "fulfill_order")

    async def cancel_order(self, order_id: str, reason: str | None = None) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "cancel_order")

    # inventory

    async def get_inventory_levels(self, skus: list[str] | None = None) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "get_inventory_levels")

    async def update_inventory(self, sku: str, quantity: int) -> AdapterResult:
        return AdapterResult.unsupported(self.marketplace, "update_inventory")
