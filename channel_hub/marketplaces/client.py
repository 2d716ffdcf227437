from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

import httpx

from channel_hub.core.config import Settings, settings as default_settings
from channel_hub.marketplaces import registry
from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.credentials import resolve_credentials
from channel_hub.marketplaces.registry import Marketplace
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.services.rate_limit import RateLimiter, build_rate_limiter
from channel_hub.services.retry import RetryPolicy

log = logging.getLogger(__name__)


class MarketplaceClient:
    """
    Entry point for building marketplace adapters.

    Owns (or borrows) one httpx.AsyncClient and one rate limiter; every adapter
    built from the same client shares both, so per-marketplace pacing holds
    across concurrent callers. Pass an instance to whoever needs it.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        retry: RetryPolicy | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or default_settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=httpx.Timeout(self.settings.http_timeout_seconds))
        self.rate_limiter = rate_limiter or build_rate_limiter(
            self.settings.rate_limiter_backend,
            redis_url=self.settings.redis_url,
            burst=registry.burst_sizes(),
        )
        self.retry = retry or RetryPolicy(
            attempts=self.settings.http_retry_attempts,
            delay_ms=self.settings.http_retry_delay_ms,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> MarketplaceClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def for_marketplace(self, name: "str | Marketplace") -> ClientBuilder:
        return ClientBuilder(client=self, marketplace=Marketplace.parse(name))

    def adapter_for(self, account: MarketplaceAccount) -> MarketplaceAdapter:
        return self.for_marketplace(account.marketplace_type).with_account(account).build()

    # static metadata, no account needed

    @staticmethod
    def supported_marketplaces() -> list[str]:
        return registry.supported_marketplaces()

    @staticmethod
    def requirements(name: "str | Marketplace") -> dict[str, Any]:
        return registry.marketplace_requirements(name)

    @staticmethod
    def capabilities(name: "str | Marketplace") -> dict[str, Any]:
        return registry.marketplace_capabilities(name)

    @staticmethod
    def docs_url(name: "str | Marketplace") -> str:
        return registry.docs_url(name)

    @staticmethod
    def capability_matrix() -> dict[str, dict[str, Any]]:
        return registry.capability_matrix()


@dataclass(frozen=True)
class ClientBuilder:
    """Immutable build step: each `with_*` returns a new builder."""

    client: MarketplaceClient
    marketplace: Marketplace
    account: MarketplaceAccount | None = None
    sandbox: bool | None = None
    retry: RetryPolicy | None = None
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def with_account(self, account: MarketplaceAccount) -> ClientBuilder:
        return replace(self, account=account)

    def with_sandbox(self, sandbox: bool = True) -> ClientBuilder:
        return replace(self, sandbox=sandbox)

    def with_retry_policy(self, policy: RetryPolicy) -> ClientBuilder:
        return replace(self, retry=policy)

    def with_config(self, config: Mapping[str, Any]) -> ClientBuilder:
        merged = dict(self.config)
        merged.update(config)
        return replace(self, config=MappingProxyType(merged))

    def build(self) -> MarketplaceAdapter:
        if self.account is None:
            raise ValueError(f"An account is required to build a {self.marketplace.value} adapter")
        if Marketplace.parse(self.account.marketplace_type) is not self.marketplace:
            raise ValueError(
                f"Account {self.account.id} is a {self.account.marketplace_type} account, not {self.marketplace.value}"
            )

        adapter_cls = registry.get_adapter_class(self.marketplace)
        credentials = resolve_credentials(self.account, operator=self.config.get("operator"))
        sandbox = self.sandbox if self.sandbox is not None else bool((self.account.settings or {}).get("sandbox", False))

        adapter = adapter_cls(
            credentials,
            http=self.client.http,
            limiter=self.client.rate_limiter,
            retry=self.retry or self.client.retry,
            sandbox=sandbox,
            config=self.config,
            account_id=self.account.id,
            timeout_seconds=self.client.settings.http_timeout_seconds,
            version=self.client.settings.version,
        )
        log.debug("built %r", adapter)
        return adapter
