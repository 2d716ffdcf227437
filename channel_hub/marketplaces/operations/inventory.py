from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Literal, Mapping

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.operations.common import (
    DEFAULT_BATCH_SIZE,
    ItemResult,
    OperationResult,
    check_batch_size,
    run_isolated,
    summarize,
)
from channel_hub.marketplaces.results import AdapterResult

log = logging.getLogger(__name__)

InventoryAction = Literal["set", "adjust", "sync"]


def _pairs(updates: "Mapping[str, int] | Iterable[Mapping]") -> tuple[tuple[str, int], ...]:
    if isinstance(updates, Mapping):
        return tuple((str(k), v) for k, v in updates.items())
    return tuple((str(u["sku"]), u["quantity"]) for u in updates)


@dataclass(frozen=True)
class InventoryOperation:
    """
    set:    absolute quantities
    adjust: signed deltas applied to the marketplace's current quantity
    sync:   absolute quantities, skus already matching are skipped
    """
    action: InventoryAction
    items: tuple[tuple[str, int], ...]
    batch_size: int = DEFAULT_BATCH_SIZE
    validate: bool = True
    dry_run: bool = False

    def __post_init__(self) -> None:
        check_batch_size(self.batch_size)
        if not self.items:
            raise ValueError(f"{self.action} operation needs at least one sku")

    def with_batch_size(self, batch_size: int) -> InventoryOperation:
        return replace(self, batch_size=batch_size)

    def with_validation(self, enabled: bool = True) -> InventoryOperation:
        return replace(self, validate=enabled)

    def as_dry_run(self, enabled: bool = True) -> InventoryOperation:
        return replace(self, dry_run=enabled)


def set_inventory(updates: "Mapping[str, int] | Iterable[Mapping]") -> InventoryOperation:
    return InventoryOperation(action="set", items=_pairs(updates))


def adjust_inventory(deltas: "Mapping[str, int] | Iterable[Mapping]") -> InventoryOperation:
    return InventoryOperation(action="adjust", items=_pairs(deltas))


def sync_inventory(local: "Mapping[str, int] | Iterable[Mapping]") -> InventoryOperation:
    return InventoryOperation(action="sync", items=_pairs(local))


class InventoryOperations:
    def __init__(self, adapter: MarketplaceAdapter):
        self.adapter = adapter

    async def _current(self, op: InventoryOperation) -> AdapterResult:
        res = await self.adapter.get_inventory_levels([sku for sku, _ in op.items])
        return res.map(lambda levels: {lvl["sku"]: int(lvl["quantity"]) for lvl in levels})

    async def execute(self, op: InventoryOperation) -> OperationResult:
        current: dict[str, int] = {}
        if op.action in ("adjust", "sync"):
            levels = await self._current(op)
            if not levels.success:
                results = [ItemResult.from_adapter(sku, levels) for sku, _ in op.items]
                return summarize(f"inventory.{op.action}", results, dry_run=op.dry_run)
            current = levels.data

        async def _one(item: tuple[str, int]) -> ItemResult:
            sku, value = item
            if op.validate and (not isinstance(value, int) or isinstance(value, bool)):
                return ItemResult.invalid(sku, ["quantity must be an integer"])

            if op.action == "adjust":
                if sku not in current:
                    return ItemResult.invalid(sku, [f"sku {sku} has no inventory on {self.adapter.marketplace}"])
                target = current[sku] + value
            else:
                target = value

            if op.validate and target < 0:
                return ItemResult.invalid(sku, ["quantity must not be negative"])

            if op.action == "sync" and current.get(sku) == target:
                return ItemResult(key=sku, success=True, data={"sku": sku, "quantity": target}, skipped=True)

            if op.dry_run:
                return ItemResult(key=sku, success=True, data={"sku": sku, "from": current.get(sku), "to": target})

            return ItemResult.from_adapter(sku, await self.adapter.update_inventory(sku, target))

        results = await run_isolated(op.items, _one, key=lambda i: i[0], batch_size=op.batch_size)
        out = summarize(f"inventory.{op.action}", results, dry_run=op.dry_run)
        log.info(
            "marketplace=%s account=%s inventory.%s processed=%s failed=%s skipped=%s",
            self.adapter.marketplace, self.adapter.account_id, op.action,
            out.processed_count, out.failed_count, out.skipped_count,
        )
        return out
