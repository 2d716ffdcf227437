from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.core.config import settings
from channel_hub.core.ids import short_id
from channel_hub.marketplaces.base import MarketplaceAdapter
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.marketplaces.fields import DiscoveredField, DiscoveredValueList
from channel_hub.marketplaces.results import ErrorType
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.services import schema_store
from channel_hub.services.health import HealthService

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DiscoveryResult:
    success: bool
    fields_discovered: int = 0
    value_lists_discovered: int = 0
    required_fields: int = 0
    optional_fields: int = 0
    error: str | None = None
    error_type: ErrorType | None = None

    @classmethod
    def failed(cls, error: str, error_type: ErrorType | None = None) -> DiscoveryResult:
        return cls(success=False, error=error, error_type=error_type)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "error_type": self.error_type.value if self.error_type else None,
            }
        return {
            "success": True,
            "fields_discovered": self.fields_discovered,
            "value_lists_discovered": self.value_lists_discovered,
            "required_fields": self.required_fields,
            "optional_fields": self.optional_fields,
        }


@dataclass(frozen=True)
class _Target:
    """Plain snapshot of an account so tasks never touch ORM state concurrently."""

    account_id: str
    marketplace: str
    channel_subtype: str
    label: str
    adapter: MarketplaceAdapter | None = None
    build_error: str | None = None


class FieldDiscoveryService:
    """
    Pulls each marketplace's field vocabulary and allowed-value lists and caches
    them in channel_field_definitions / channel_value_lists.

    Accounts run through a bounded pool. Fetching happens concurrently, writing
    is serialized on one lock so a shared session is never used by two tasks at
    once. Every upsert is keyed by natural key so re-running is harmless.
    """

    def __init__(
        self,
        session: AsyncSession,
        client: MarketplaceClient,
        *,
        max_concurrency: int | None = None,
        stale_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
        health: HealthService | None = None,
    ):
        self.session = session
        self.client = client
        self.max_concurrency = max(1, max_concurrency or settings.discovery_max_concurrency)
        self.stale_days = stale_days if stale_days is not None else settings.discovery_stale_days
        self.clock = clock or _utcnow
        self.health = health or HealthService(session, stale_days=self.stale_days, clock=self.clock)
        self._write_lock = asyncio.Lock()

    # accounts

    async def _active_accounts(self) -> list[MarketplaceAccount]:
        q = (
            select(MarketplaceAccount)
            .where(MarketplaceAccount.is_active.is_(True))
            .order_by(MarketplaceAccount.created_at, MarketplaceAccount.id)
        )
        return list((await self.session.execute(q)).scalars().all())

    def _target(self, account: MarketplaceAccount) -> _Target:
        base = dict(
            account_id=account.id,
            marketplace=account.marketplace_type,
            channel_subtype=account.channel_subtype,
            label=account.channel_label,
        )
        try:
            return _Target(**base, adapter=self.client.adapter_for(account))
        except ValueError as e:
            # unknown marketplace or broken account row
            return _Target(**base, build_error=str(e))

    # discovery

    async def discover_all_channels(self) -> dict[str, Any]:
        return await self._run(await self._active_accounts())

    async def discover_channel_fields(self, account: MarketplaceAccount) -> DiscoveryResult:
        try:
            return await self._safe_discover(self._target(account), "single")
        finally:
            self.health.invalidate()

    async def sync_outdated_fields(self, stale_days: int | None = None) -> dict[str, Any]:
        cutoff = self.clock() - timedelta(days=stale_days if stale_days is not None else self.stale_days)
        channels = await schema_store.stale_field_channels(self.session, cutoff=cutoff)
        return await self._run(self._matching(await self._active_accounts(), channels))

    async def sync_outdated_value_lists(self, stale_days: int | None = None) -> dict[str, Any]:
        cutoff = self.clock() - timedelta(days=stale_days if stale_days is not None else self.stale_days)
        channels = await schema_store.stale_value_list_channels(self.session, cutoff=cutoff)
        return await self._run(self._matching(await self._active_accounts(), channels))

    @staticmethod
    def _matching(accounts: Iterable[MarketplaceAccount], channels: set[tuple[str, str]]) -> list[MarketplaceAccount]:
        return [a for a in accounts if (a.marketplace_type, a.channel_subtype) in channels]

    async def _run(self, accounts: list[MarketplaceAccount]) -> dict[str, Any]:
        run_id = short_id("disc")
        targets = [self._target(a) for a in accounts]
        sem = asyncio.Semaphore(self.max_concurrency)
        log.info("discovery run=%s accounts=%s concurrency=%s", run_id, len(targets), self.max_concurrency)

        async def _one(target: _Target) -> dict[str, Any]:
            async with sem:
                result = await self._safe_discover(target, run_id)
            return {"account_id": target.account_id, "channel": target.label, "result": result.to_dict()}

        try:
            results = await asyncio.gather(*(_one(t) for t in targets))
        finally:
            self.health.invalidate()

        summary = self._summarize(results)
        log.info(
            "discovery run=%s done successful=%s failed=%s fields=%s value_lists=%s",
            run_id, summary["successful"], summary["failed"], summary["total_fields"], summary["total_value_lists"],
        )
        return {"processed_accounts": len(results), "results": list(results), "summary": summary}

    @staticmethod
    def _summarize(results: list[dict[str, Any]]) -> dict[str, Any]:
        ok = [r["result"] for r in results if r["result"]["success"]]
        return {
            "total_accounts": len(results),
            "successful": len(ok),
            "failed": len(results) - len(ok),
            "total_fields": sum(r["fields_discovered"] for r in ok),
            "total_value_lists": sum(r["value_lists_discovered"] for r in ok),
            "total_required_fields": sum(r["required_fields"] for r in ok),
            "total_optional_fields": sum(r["optional_fields"] for r in ok),
            "errors": [
                {"account_id": r["account_id"], "channel": r["channel"], "error": r["result"]["error"]}
                for r in results
                if not r["result"]["success"]
            ],
        }

    async def _safe_discover(self, target: _Target, run_id: str) -> DiscoveryResult:
        try:
            return await self._discover(target)
        except Exception as e:
            log.exception("discovery run=%s channel=%s crashed", run_id, target.label)
            return DiscoveryResult.failed(f"{target.label}: {e}", ErrorType.EXCEPTION)

    async def _discover(self, target: _Target) -> DiscoveryResult:
        if target.adapter is None:
            return DiscoveryResult.failed(target.build_error or "adapter unavailable", ErrorType.CONFIGURATION_ERROR)
        adapter = target.adapter

        attributes = await adapter.get_product_attributes()
        if not attributes.success:
            return DiscoveryResult.failed(
                f"Failed to get {target.marketplace} attributes: {attributes.error}", attributes.error_type
            )

        value_lists = await adapter.get_value_lists()
        if not value_lists.success:
            error = f"Failed to get {target.marketplace} value lists: {value_lists.error}"
            async with self._write_lock:
                await schema_store.mark_value_lists_failed(
                    self.session,
                    channel_type=target.marketplace,
                    channel_subtype=target.channel_subtype,
                    error=error,
                    now=self.clock(),
                )
                await self.session.commit()
            return DiscoveryResult.failed(error, value_lists.error_type)

        fields: list[DiscoveredField] = list(attributes.data or [])
        lists: list[DiscoveredValueList] = list(value_lists.data or [])
        await self._store(target, fields, lists)

        required = sum(1 for f in fields if f.required)
        log.info(
            "discovered channel=%s fields=%s required=%s value_lists=%s",
            target.label, len(fields), required, len(lists),
        )
        return DiscoveryResult(
            success=True,
            fields_discovered=len(fields),
            value_lists_discovered=len(lists),
            required_fields=required,
            optional_fields=len(fields) - required,
        )

    async def _store(self, target: _Target, fields: list[DiscoveredField], lists: list[DiscoveredValueList]) -> None:
        async with self._write_lock:
            now = self.clock()
            try:
                for f in fields:
                    await schema_store.upsert_field(
                        self.session,
                        channel_type=target.marketplace,
                        channel_subtype=target.channel_subtype,
                        field=f,
                        now=now,
                    )
                for vl in lists:
                    await schema_store.upsert_value_list(
                        self.session,
                        channel_type=target.marketplace,
                        channel_subtype=target.channel_subtype,
                        value_list=vl,
                        now=now,
                    )
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

    # statistics

    async def get_discovery_statistics(self) -> dict[str, Any]:
        now = self.clock()
        stale_cutoff = now - timedelta(days=self.stale_days)
        sync_accounts = (
            await self.session.execute(
                select(func.count(MarketplaceAccount.id)).where(MarketplaceAccount.is_active.is_(True))
            )
        ).scalar_one()
        report = await self.health.report()
        return {
            "field_definitions": await schema_store.field_statistics(self.session, stale_cutoff=stale_cutoff),
            "value_lists": await schema_store.value_list_statistics(self.session, stale_cutoff=stale_cutoff),
            "sync_accounts": int(sync_accounts),
            "last_discovery": await schema_store.last_discovery(self.session),
            "last_sync": await schema_store.last_sync(self.session),
            "discovery_health": report.to_dict(),
        }
