from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from cryptography.fernet import InvalidToken

from channel_hub.core.crypto import decrypt_json
from channel_hub.models.marketplace_account import MarketplaceAccount

log = logging.getLogger(__name__)

# keys whose values are never shown in clear
SECRET_KEYS = frozenset({
    "access_token", "api_key", "client_secret", "secret_key", "refresh_token", "password", "session_token",
})


def _frozen(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class MarketplaceCredentials:
    """
    Read-only credential bag resolved from an account.

    Lookups never raise: a missing key is simply absent. Callers check
    `validate_required()` before using an adapter for a live call.
    """
    type: str
    credentials: Mapping[str, Any] = field(default_factory=lambda: _frozen(None))
    settings: Mapping[str, Any] = field(default_factory=lambda: _frozen(None))
    operator: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "credentials", _frozen(self.credentials))
        object.__setattr__(self, "settings", _frozen(self.settings))

    def has_credential(self, key: str) -> bool:
        value = self.credentials.get(key)
        return value is not None and str(value).strip() != ""

    def get(self, key: str, default: Any = None) -> Any:
        if self.has_credential(key):
            return self.credentials[key]
        # non-secret options may be kept on the account settings instead
        value = self.settings.get(key)
        if value is not None and str(value).strip() != "":
            return value
        return default

    def validate_required(self, keys: Iterable[str]) -> list[str]:
        return [k for k in keys if self.get(k) is None]

    def with_overrides(self, **values: Any) -> MarketplaceCredentials:
        merged = dict(self.credentials)
        merged.update({k: v for k, v in values.items() if v is not None})
        return MarketplaceCredentials(type=self.type, credentials=merged, settings=self.settings, operator=self.operator)

    def masked(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for k, v in self.credentials.items():
            if k in SECRET_KEYS and v:
                s = str(v)
                out[k] = (s[:4] + "****") if len(s) > 4 else "****"
            else:
                out[k] = v
        return out


def resolve_credentials(account: MarketplaceAccount, *, operator: str | None = None) -> MarketplaceCredentials:
    bag: dict[str, Any] = {}
    if account.credentials_ciphertext:
        try:
            bag = decrypt_json(account.credentials_ciphertext)
        except (InvalidToken, ValueError) as e:
            # undecryptable bag behaves like an empty one; validation reports what is missing
            log.warning("credentials unreadable account=%s error=%s", account.id, type(e).__name__)
            bag = {}
        if not isinstance(bag, dict):
            log.warning("credentials are not a mapping account=%s type=%s", account.id, type(bag).__name__)
            bag = {}

    op = operator or account.marketplace_subtype or bag.get("operator")
    if op and "operator" not in bag:
        bag["operator"] = op

    return MarketplaceCredentials(
        type=account.marketplace_type,
        credentials=bag,
        settings=account.settings or {},
        operator=op,
    )
