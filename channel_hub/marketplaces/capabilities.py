from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Literal

AuthType = Literal["access_token", "oauth2_client_credentials", "aws_sigv4", "api_key"]
DiscoveryMode = Literal["static", "dynamic"]
Area = Literal["products", "orders", "inventory"]


@dataclass(frozen=True)
class MarketplaceCapabilities:
    """
    Describes WHAT a marketplace integration can do and HOW we talk to it.
    """
    marketplace: str
    auth: AuthType
    discovery: DiscoveryMode

    products: frozenset[str] = frozenset()
    orders: frozenset[str] = frozenset()
    inventory: frozenset[str] = frozenset()

    features: dict[str, bool] = field(default_factory=dict)

    # operational hints
    max_requests_per_minute: int | None = None
    supports_sandbox: bool = False

    def supports(self, area: Area, operation: str) -> bool:
        return operation in getattr(self, area)

    def to_dict(self) -> dict[str, Any]:
        return {
            "marketplace": self.marketplace,
            "auth": self.auth,
            "discovery": self.discovery,
            "products": sorted(self.products),
            "orders": sorted(self.orders),
            "inventory": sorted(self.inventory),
            "features": dict(self.features),
            "max_requests_per_minute": self.max_requests_per_minute,
            "supports_sandbox": self.supports_sandbox,
        }


@dataclass(frozen=True)
class RateLimits:
    requests_per_minute: int
    requests_per_second: int | None = None
    burst: int | None = None


@dataclass(frozen=True)
class CredentialField:
    key: str
    label: str
    description: str = ""
    required: bool = True
    type: str = "text"  # text | password | url | select
    options: tuple[str, ...] = ()
    default: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "type": self.type,
        }
        if self.options:
            out["options"] = list(self.options)
        if self.default is not None:
            out["default"] = self.default
        return out


@dataclass(frozen=True)
class AuthMethod:
    key: str
    name: str
    description: str
    fields: tuple[str, ...]


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
