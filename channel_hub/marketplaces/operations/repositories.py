from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.results import AdapterResult

# guards against marketplaces that keep returning a cursor
MAX_PAGES = 50


@dataclass(frozen=True)
class Page:
    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    total: int | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def _to_page(data: Mapping[str, Any]) -> Page:
    total = data.get("total")
    return Page(items=list(data.get("items", [])), next_cursor=data.get("next"), total=int(total) if total is not None else None)


class _PagedRepository(ABC):
    def __init__(self, adapter: MarketplaceAdapter):
        self.adapter = adapter

    @abstractmethod
    def _lister(self) -> Callable[[Mapping[str, Any]], Awaitable[AdapterResult]]:
        """The adapter listing call this repository pages through."""

    async def page(self, *, limit: int = 50, cursor: str | None = None, **filters: Any) -> AdapterResult:
        res = await self._lister()({**filters, "limit": limit, "cursor": cursor})
        return res.map(_to_page)

    async def pages(self, *, limit: int = 50, **filters: Any) -> AsyncIterator[AdapterResult]:
        cursor = None
        for _ in range(MAX_PAGES):
            res = await self.page(limit=limit, cursor=cursor, **filters)
            yield res
            if not res.success or not res.data.has_more:
                return
            cursor = res.data.next_cursor

    async def all(self, *, limit: int = 50, where: Callable[[dict[str, Any]], bool] | None = None, **filters: Any) -> AdapterResult:
        items: list[dict[str, Any]] = []
        async for res in self.pages(limit=limit, **filters):
            if not res.success:
                return res
            items.extend(i for i in res.data.items if where is None or where(i))
        return AdapterResult.ok(items)


class ProductRepository(_PagedRepository):
    def _lister(self):
        return self.adapter.list_products

    async def find(self, product_id: str) -> AdapterResult:
        return await self.adapter.get_product(product_id)

    async def in_category(self, category: str) -> AdapterResult:
        # filter passed upstream where supported, re-checked here for the rest
        return await self.all(category=category, where=lambda p: p.get("category") == category)

    async def with_status(self, status: str) -> AdapterResult:
        return await self.all(status=status, where=lambda p: p.get("status") == status)


class OrderRepository(_PagedRepository):
    def _lister(self):
        return self.adapter.list_orders

    async def find(self, order_id: str) -> AdapterResult:
        return await self.adapter.get_order(order_id)

    async def pending(self) -> AdapterResult:
        return await self.all(where=lambda o: o.get("fulfillment_status") == "pending")

    async def since(self, when: "datetime | str") -> AdapterResult:
        stamp = when.isoformat() if isinstance(when, datetime) else when
        return await self.all(since=stamp)


class InventoryRepository:
    def __init__(self, adapter: MarketplaceAdapter):
        self.adapter = adapter

    async def levels(self, skus: list[str] | None = None) -> AdapterResult:
        return await self.adapter.get_inventory_levels(skus)

    async def find(self, sku: str) -> AdapterResult:
        res = await self.levels([sku])
        return res.map(lambda levels: next((lvl for lvl in levels if lvl["sku"] == sku), None))

    async def _where(self, pred: Callable[[int], bool]) -> AdapterResult:
        res = await self.levels()
        return res.map(lambda levels: [lvl for lvl in levels if pred(int(lvl["quantity"]))])

    async def low_stock(self, threshold: int = 5) -> AdapterResult:
        return await self._where(lambda q: 0 < q <= threshold)

    async def out_of_stock(self) -> AdapterResult:
        return await self._where(lambda q: q <= 0)

    async def with_quantity_between(self, minimum: int, maximum: int) -> AdapterResult:
        if minimum > maximum:
            raise ValueError("minimum must not exceed maximum")
        return await self._where(lambda q: minimum <= q <= maximum)
