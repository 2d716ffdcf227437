from __future__ import annotations

from enum import Enum
from typing import Any

from channel_hub.marketplaces.amazon import AmazonAdapter
from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.ebay import EbayAdapter
from channel_hub.marketplaces.mirakl import MiraklAdapter
from channel_hub.marketplaces.results import UnsupportedMarketplaceError
from channel_hub.marketplaces.shopify import ShopifyAdapter


class Marketplace(str, Enum):
    SHOPIFY = "shopify"
    EBAY = "ebay"
    AMAZON = "amazon"
    MIRAKL = "mirakl"

    @classmethod
    def parse(cls, name: "str | Marketplace") -> Marketplace:
        if isinstance(name, cls):
            return name
        key = str(name or "").lower().strip()
        try:
            return cls(key)
        except ValueError:
            raise UnsupportedMarketplaceError(str(name)) from None


_ADAPTERS: dict[Marketplace, type[MarketplaceAdapter]] = {
    Marketplace.SHOPIFY: ShopifyAdapter,
    Marketplace.EBAY: EbayAdapter,
    Marketplace.AMAZON: AmazonAdapter,
    Marketplace.MIRAKL: MiraklAdapter,
}


def get_adapter_class(name: "str | Marketplace") -> type[MarketplaceAdapter]:
    return _ADAPTERS[Marketplace.parse(name)]


def supported_marketplaces() -> list[str]:
    return sorted(m.value for m in _ADAPTERS)


def marketplace_requirements(name: "str | Marketplace") -> dict[str, Any]:
    cls = get_adapter_class(name)
    return {
        "marketplace": cls.marketplace,
        "display_name": cls.display_name,
        "fields": {k: f.to_dict() for k, f in cls.requirements().items()},
        "auth_methods": [
            {"key": m.key, "name": m.name, "description": m.description, "fields": list(m.fields)}
            for m in cls.supported_auth_methods()
        ],
        "docs_url": cls.docs_url,
    }


def docs_url(name: "str | Marketplace") -> str:
    return get_adapter_class(name).docs_url


def marketplace_capabilities(name: "str | Marketplace") -> dict[str, Any]:
    cls = get_adapter_class(name)
    limits = cls.rate_limits()
    out = cls.capabilities().to_dict()
    out["rate_limits"] = {
        "requests_per_minute": limits.requests_per_minute,
        "requests_per_second": limits.requests_per_second,
        "burst": limits.burst,
    }
    return out


def capability_matrix() -> dict[str, dict[str, Any]]:
    return {name: marketplace_capabilities(name) for name in supported_marketplaces()}


def burst_sizes() -> dict[str, int]:
    return {m.value: (cls.rate_limits().burst or 1) for m, cls in _ADAPTERS.items()}
