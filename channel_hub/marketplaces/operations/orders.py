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

OrderAction = Literal["fulfill", "cancel"]


def _key(item: Mapping[str, Any]) -> str:
    return str(item.get("order_id") or "")


@dataclass(frozen=True)
class OrderOperation:
    action: OrderAction
    items: tuple[Mapping[str, Any], ...]
    batch_size: int = DEFAULT_BATCH_SIZE
    validate: bool = True
    dry_run: bool = False

    def __post_init__(self) -> None:
        check_batch_size(self.batch_size)
        if not self.items:
            raise ValueError(f"{self.action} operation needs at least one order")
        if any(not i.get("order_id") for i in self.items):
            raise ValueError("every order item needs an order_id")

    def with_batch_size(self, batch_size: int) -> OrderOperation:
        return replace(self, batch_size=batch_size)

    def with_validation(self, enabled: bool = True) -> OrderOperation:
        return replace(self, validate=enabled)

    def as_dry_run(self, enabled: bool = True) -> OrderOperation:
        return replace(self, dry_run=enabled)


def fulfill_orders(fulfillments: Iterable[Mapping[str, Any]]) -> OrderOperation:
    return OrderOperation(action="fulfill", items=tuple(MappingProxyType(dict(f)) for f in fulfillments))


def cancel_orders(order_ids: Iterable[str], reason: str | None = None) -> OrderOperation:
    return OrderOperation(
        action="cancel",
        items=tuple(MappingProxyType({"order_id": str(oid), "reason": reason}) for oid in order_ids),
    )


class OrderOperations:
    def __init__(self, adapter: MarketplaceAdapter):
        self.adapter = adapter

    async def _one(self, op: OrderOperation, item: Mapping[str, Any]) -> ItemResult:
        key = _key(item)
        if op.validate and op.action == "fulfill":
            errors = [f"{k} is required" for k in ("tracking_number", "tracking_company") if not item.get(k)]
            if errors:
                return ItemResult.invalid(key, errors)

        if op.dry_run:
            return ItemResult(key=key, success=True, data={"action": op.action, "payload": dict(item)})

        if op.action == "fulfill":
            res = await self.adapter.fulfill_order(key, item)
        else:
            res = await self.adapter.cancel_order(key, item.get("reason"))
        return ItemResult.from_adapter(key, res)

    async def execute(self, op: OrderOperation) -> OperationResult:
        results = await run_isolated(op.items, lambda i: self._one(op, i), key=_key, batch_size=op.batch_size)
        out = summarize(f"orders.{op.action}", results, dry_run=op.dry_run)
        log.info(
            "marketplace=%s account=%s orders.%s processed=%s failed=%s",
            self.adapter.marketplace, self.adapter.account_id, op.action, out.processed_count, out.failed_count,
        )
        return out
