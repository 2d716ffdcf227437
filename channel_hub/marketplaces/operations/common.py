from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from channel_hub.marketplaces.results import AdapterResult, ErrorType

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 50


@dataclass(frozen=True)
class ItemResult:
    key: str
    success: bool
    data: Any = None
    error: str | None = None
    error_type: ErrorType | None = None
    skipped: bool = False

    @classmethod
    def from_adapter(cls, key: str, res: AdapterResult) -> ItemResult:
        return cls(key=key, success=res.success, data=res.data, error=res.error, error_type=res.error_type)

    @classmethod
    def invalid(cls, key: str, errors: list[str]) -> ItemResult:
        return cls(key=key, success=False, error="; ".join(errors), error_type=ErrorType.VALIDATION_ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_type": self.error_type.value if self.error_type else None,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class OperationResult:
    action: str
    processed_count: int
    failed_count: int
    skipped_count: int = 0
    results: list[ItemResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "dry_run": self.dry_run,
            "results": [r.to_dict() for r in self.results],
        }


def summarize(action: str, results: list[ItemResult], *, dry_run: bool = False) -> OperationResult:
    skipped = sum(1 for r in results if r.skipped)
    failed = sum(1 for r in results if not r.success)
    return OperationResult(
        action=action,
        processed_count=len(results) - skipped,
        failed_count=failed,
        skipped_count=skipped,
        results=results,
        dry_run=dry_run,
    )


def check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")


async def run_isolated(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[ItemResult]],
    *,
    key: Callable[[T], str],
    batch_size: int,
) -> list[ItemResult]:
    """
    Run `handler` over items, one batch at a time, items of a batch concurrently.
    An exception from one item becomes that item's failure; the rest still run.
    """

    async def _guarded(item: T) -> ItemResult:
        try:
            return await handler(item)
        except Exception as e:
            log.exception("operation item failed key=%s", key(item))
            return ItemResult(key=key(item), success=False, error=str(e) or type(e).__name__, error_type=ErrorType.EXCEPTION)

    results: list[ItemResult] = []
    for start in range(0, len(items), batch_size):
        chunk = items[start:start + batch_size]
        results.extend(await asyncio.gather(*(_guarded(i) for i in chunk)))
    return results
