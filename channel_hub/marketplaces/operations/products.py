from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Iterable, Literal, Mapping

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.operations.common import (
    DEFAULT_BATCH_SIZE,
    ItemResult,
    OperationResult,
    check_batch_size,
    run_isolated,
    summarize,
)

log = logging.getLogger(__name__)

ProductAction = Literal["create", "update", "delete"]


def _freeze(items: Iterable[Mapping[str, Any]]) -> tuple[Mapping[str, Any], ...]:
    return tuple(MappingProxyType(dict(i)) for i in items)


def _key(item: Mapping[str, Any]) -> str:
    return str(item.get("id") or item.get("sku") or "")


@dataclass(frozen=True)
class ProductOperation:
    action: ProductAction
    items: tuple[Mapping[str, Any], ...]
    batch_size: int = DEFAULT_BATCH_SIZE
    validate: bool = True
    dry_run: bool = False

    def __post_init__(self) -> None:
        check_batch_size(self.batch_size)
        if not self.items:
            raise ValueError(f"{self.action} operation needs at least one product")
        if self.action in ("update", "delete"):
            missing = [i for i, p in enumerate(self.items) if not p.get("id")]
            if missing:
                raise ValueError(f"{self.action} needs an id on every product (missing at {missing})")

    def with_batch_size(self, batch_size: int) -> ProductOperation:
        return replace(self, batch_size=batch_size)

    def with_validation(self, enabled: bool = True) -> ProductOperation:
        return replace(self, validate=enabled)

    def as_dry_run(self, enabled: bool = True) -> ProductOperation:
        return replace(self, dry_run=enabled)


def create_products(products: Iterable[Mapping[str, Any]]) -> ProductOperation:
    return ProductOperation(action="create", items=_freeze(products))


def update_products(products: Iterable[Mapping[str, Any]]) -> ProductOperation:
    return ProductOperation(action="update", items=_freeze(products))


def delete_products(product_ids: Iterable[str]) -> ProductOperation:
    return ProductOperation(action="delete", items=_freeze({"id": str(pid)} for pid in product_ids), validate=False)


class ProductOperations:
    def __init__(self, adapter: MarketplaceAdapter):
        self.adapter = adapter

    async def _one(self, op: ProductOperation, product: Mapping[str, Any]) -> ItemResult:
        key = _key(product)
        if op.validate and op.action != "delete":
            payload = dict(product)
            if op.action == "update":
                # partial updates only validate what they carry
                errors = [e for e in self.adapter.validate_product(payload) if e.split(" ", 1)[0] in payload]
            else:
                errors = self.adapter.validate_product(payload)
            if errors:
                return ItemResult.invalid(key, errors)

        if op.dry_run:
            return ItemResult(key=key, success=True, data={"action": op.action, "payload": dict(product)})

        if op.action == "create":
            res = await self.adapter.create_product(product)
        elif op.action == "update":
            res = await self.adapter.update_product(str(product["id"]), product)
        else:
            res = await self.adapter.delete_product(str(product["id"]))
        return ItemResult.from_adapter(key, res)

    async def execute(self, op: ProductOperation) -> OperationResult:
        results = await run_isolated(
            op.items,
            lambda p: self._one(op, p),
            key=_key,
            batch_size=op.batch_size,
        )
        out = summarize(f"products.{op.action}", results, dry_run=op.dry_run)
        log.info(
            "marketplace=%s account=%s products.%s processed=%s failed=%s dry_run=%s",
            self.adapter.marketplace, self.adapter.account_id, op.action, out.processed_count, out.failed_count, op.dry_run,
        )
        return out
