from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.core.config import settings
from channel_hub.services import schema_store

log = logging.getLogger(__name__)

GOOD_THRESHOLD = 70.0
POOR_THRESHOLD = 50.0


@dataclass(frozen=True)
class FieldCounts:
    total: int = 0
    recently_verified: int = 0
    needs_verification: int = 0


@dataclass(frozen=True)
class ValueListCounts:
    total: int = 0
    synced: int = 0
    failed: int = 0


@dataclass(frozen=True)
class HealthReport:
    field_health: dict[str, Any]
    value_list_health: dict[str, Any]
    overall_health: dict[str, Any]

    @property
    def score(self) -> float:
        return self.overall_health["score"]

    @property
    def status(self) -> str:
        return self.overall_health["status"]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def percentage(part: int, total: int) -> float:
    return (part / total) * 100 if total > 0 else 0.0


def status_for(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def recommendations_for(overall: float, field_score: float, value_list_score: float) -> list[str]:
    out: list[str] = []
    if field_score < GOOD_THRESHOLD:
        out.append("Run field discovery to update outdated field definitions")
    if value_list_score < GOOD_THRESHOLD:
        out.append("Sync failed or outdated value lists")
    if overall < POOR_THRESHOLD:
        out.append("Consider implementing automated monthly sync job")
        out.append("Check marketplace API credentials and connectivity")
    if not out:
        out.append("System health is good - continue regular monitoring")
    return out


def score_health(fields: FieldCounts, value_lists: ValueListCounts) -> HealthReport:
    """
    Field score is the share of definitions verified recently, value-list score the
    share of lists currently synced. Overall is their plain mean; rounding happens
    only on the way out so buckets see the exact value.
    """
    field_score = percentage(fields.recently_verified, fields.total)
    value_list_score = percentage(value_lists.synced, value_lists.total)
    overall = (field_score + value_list_score) / 2

    return HealthReport(
        field_health={**asdict(fields), "health_score": round(field_score, 1)},
        value_list_health={**asdict(value_lists), "health_score": round(value_list_score, 1)},
        overall_health={
            "score": round(overall, 1),
            "status": status_for(overall),
            "recommendations": recommendations_for(overall, field_score, value_list_score),
        },
    )


@dataclass
class TTLCache:
    ttl_seconds: float
    clock: Callable[[], float] = time.monotonic
    _entries: dict[Any, tuple[float, Any]] = field(default_factory=dict)

    def get(self, key: Any) -> Any | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if self.clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: Any, value: Any) -> None:
        self._entries[key] = (self.clock() + self.ttl_seconds, value)

    def clear(self) -> None:
        self._entries.clear()


# shared by every request in the process; reports may lag writes by up to the ttl
report_cache = TTLCache(ttl_seconds=settings.health_cache_ttl_seconds)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        recent_days: int | None = None,
        stale_days: int | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.recent_days = recent_days if recent_days is not None else settings.health_recent_days
        self.stale_days = stale_days if stale_days is not None else settings.discovery_stale_days
        self.cache = cache if cache is not None else report_cache
        self.clock = clock or _utcnow

    async def _counts(self, channel_type: str | None) -> tuple[FieldCounts, ValueListCounts]:
        now = self.clock()
        total, recent, stale = await schema_store.field_counts(
            self.session,
            recent_cutoff=now - timedelta(days=self.recent_days),
            stale_cutoff=now - timedelta(days=self.stale_days),
            channel_type=channel_type,
        )
        vl_total, synced, failed = await schema_store.value_list_counts(self.session, channel_type=channel_type)
        return FieldCounts(total, recent, stale), ValueListCounts(vl_total, synced, failed)

    async def report(self, channel_type: str | None = None, *, refresh: bool = False) -> HealthReport:
        key = ("report", channel_type)
        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        fields, value_lists = await self._counts(channel_type)
        report = score_health(fields, value_lists)
        self.cache.set(key, report)
        log.debug("health channel=%s score=%s status=%s", channel_type or "*", report.score, report.status)
        return report

    async def report_by_channel(self, *, refresh: bool = False) -> dict[str, HealthReport]:
        return {
            channel: await self.report(channel, refresh=refresh)
            for channel in await schema_store.channel_types(self.session)
        }

    def invalidate(self) -> None:
        self.cache.clear()
