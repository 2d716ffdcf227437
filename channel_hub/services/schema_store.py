from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.core.ids import gen_id
from channel_hub.marketplaces.fields import DiscoveredField, DiscoveredValueList
from channel_hub.models.channel_field_definition import ChannelFieldDefinition
from channel_hub.models.channel_value_list import ChannelValueList

log = logging.getLogger(__name__)

FIELD_KEY = ["channel_type", "channel_subtype", "category", "field_code"]
VALUE_LIST_KEY = ["channel_type", "channel_subtype", "list_code"]


def _insert(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"upsert not supported on {dialect}")


async def upsert_field(
    session: AsyncSession,
    *,
    channel_type: str,
    channel_subtype: str | None,
    field: DiscoveredField,
    now: datetime,
) -> None:
    values: dict[str, Any] = {
        "channel_type": channel_type,
        "channel_subtype": channel_subtype or "",
        "category": field.category or "",
        "field_code": field.code,
        "field_label": field.label or field.code,
        "field_type": field.field_type.value,
        "is_required": field.required,
        "description": field.description,
        "validation_rules": field.validation_rules,
        "value_list_code": field.value_list_code,
        "field_metadata": field.metadata,
        "last_verified_at": now,
        "is_active": True,
    }
    stmt = _insert(session, ChannelFieldDefinition).values(id=gen_id("cfd"), discovered_at=now, **values)
    # discovered_at keeps the first-seen time; everything else follows upstream
    stmt = stmt.on_conflict_do_update(index_elements=FIELD_KEY, set_={**values, "updated_at": now})
    await session.execute(stmt)


async def upsert_value_list(
    session: AsyncSession,
    *,
    channel_type: str,
    channel_subtype: str | None,
    value_list: DiscoveredValueList,
    now: datetime,
) -> None:
    values: dict[str, Any] = {
        "channel_type": channel_type,
        "channel_subtype": channel_subtype or "",
        "list_code": value_list.code,
        "list_name": value_list.name or value_list.code,
        "list_description": value_list.description,
        "allowed_values": list(value_list.values),
        "value_metadata": dict(value_list.labels) or None,
        "values_count": len(value_list.values),
        "last_synced_at": now,
        "sync_status": "synced",
        "sync_error": None,
        "is_active": True,
    }
    stmt = _insert(session, ChannelValueList).values(id=gen_id("cvl"), discovered_at=now, **values)
    stmt = stmt.on_conflict_do_update(index_elements=VALUE_LIST_KEY, set_={**values, "updated_at": now})
    await session.execute(stmt)


async def mark_value_lists_failed(
    session: AsyncSession,
    *,
    channel_type: str,
    channel_subtype: str | None,
    error: str,
    now: datetime,
) -> int:
    result = await session.execute(
        update(ChannelValueList)
        .where(
            ChannelValueList.channel_type == channel_type,
            ChannelValueList.channel_subtype == (channel_subtype or ""),
        )
        .values(sync_status="failed", sync_error=error[:2000], updated_at=now)
    )
    return result.rowcount or 0


async def stale_field_channels(session: AsyncSession, *, cutoff: datetime) -> set[tuple[str, str]]:
    rows = (
        await session.execute(
            select(ChannelFieldDefinition.channel_type, ChannelFieldDefinition.channel_subtype)
            .where(ChannelFieldDefinition.last_verified_at < cutoff)
            .distinct()
        )
    ).all()
    return {(r[0], r[1]) for r in rows}


def _value_list_needs_sync(cutoff: datetime):
    return or_(
        ChannelValueList.sync_status.in_(("pending", "failed")),
        ChannelValueList.last_synced_at.is_(None),
        ChannelValueList.last_synced_at < cutoff,
    )


async def stale_value_list_channels(session: AsyncSession, *, cutoff: datetime) -> set[tuple[str, str]]:
    rows = (
        await session.execute(
            select(ChannelValueList.channel_type, ChannelValueList.channel_subtype)
            .where(_value_list_needs_sync(cutoff))
            .distinct()
        )
    ).all()
    return {(r[0], r[1]) for r in rows}


async def field_counts(
    session: AsyncSession,
    *,
    recent_cutoff: datetime,
    stale_cutoff: datetime,
    channel_type: str | None = None,
) -> tuple[int, int, int]:
    """(total, verified since recent_cutoff, not verified since stale_cutoff)"""
    stmt = select(
        func.count(ChannelFieldDefinition.id),
        func.coalesce(func.sum(case((ChannelFieldDefinition.last_verified_at > recent_cutoff, 1), else_=0)), 0),
        func.coalesce(func.sum(case((ChannelFieldDefinition.last_verified_at < stale_cutoff, 1), else_=0)), 0),
    )
    if channel_type:
        stmt = stmt.where(ChannelFieldDefinition.channel_type == channel_type)
    total, recent, stale = (await session.execute(stmt)).one()
    return int(total), int(recent), int(stale)


async def value_list_counts(session: AsyncSession, *, channel_type: str | None = None) -> tuple[int, int, int]:
    """(total, synced, failed)"""
    stmt = select(
        func.count(ChannelValueList.id),
        func.coalesce(func.sum(case((ChannelValueList.sync_status == "synced", 1), else_=0)), 0),
        func.coalesce(func.sum(case((ChannelValueList.sync_status == "failed", 1), else_=0)), 0),
    )
    if channel_type:
        stmt = stmt.where(ChannelValueList.channel_type == channel_type)
    total, synced, failed = (await session.execute(stmt)).one()
    return int(total), int(synced), int(failed)


async def channel_types(session: AsyncSession) -> list[str]:
    a = (await session.execute(select(ChannelFieldDefinition.channel_type).distinct())).scalars().all()
    b = (await session.execute(select(ChannelValueList.channel_type).distinct())).scalars().all()
    return sorted(set(a) | set(b))


async def field_statistics(session: AsyncSession, *, stale_cutoff: datetime) -> dict[str, Any]:
    total, active, required, needs_verification = (
        await session.execute(
            select(
                func.count(ChannelFieldDefinition.id),
                func.coalesce(func.sum(case((ChannelFieldDefinition.is_active.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((ChannelFieldDefinition.is_required.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((ChannelFieldDefinition.last_verified_at < stale_cutoff, 1), else_=0)), 0),
            )
        )
    ).one()

    by_channel = dict(
        (
            await session.execute(
                select(ChannelFieldDefinition.channel_type, func.count(ChannelFieldDefinition.id))
                .group_by(ChannelFieldDefinition.channel_type)
            )
        ).all()
    )
    by_type = dict(
        (
            await session.execute(
                select(ChannelFieldDefinition.field_type, func.count(ChannelFieldDefinition.id))
                .group_by(ChannelFieldDefinition.field_type)
            )
        ).all()
    )
    return {
        "total_fields": int(total),
        "active_fields": int(active),
        "required_fields": int(required),
        "optional_fields": int(total) - int(required),
        "needs_verification": int(needs_verification),
        "by_channel": {k: int(v) for k, v in by_channel.items()},
        "by_type": {k: int(v) for k, v in by_type.items()},
    }


async def value_list_statistics(session: AsyncSession, *, stale_cutoff: datetime) -> dict[str, Any]:
    status_col = ChannelValueList.sync_status
    total, active, synced, failed, pending, total_values, needs_sync, last_sync = (
        await session.execute(
            select(
                func.count(ChannelValueList.id),
                func.coalesce(func.sum(case((ChannelValueList.is_active.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(case((status_col == "synced", 1), else_=0)), 0),
                func.coalesce(func.sum(case((status_col == "failed", 1), else_=0)), 0),
                func.coalesce(func.sum(case((status_col == "pending", 1), else_=0)), 0),
                func.coalesce(func.sum(ChannelValueList.values_count), 0),
                func.coalesce(func.sum(case((_value_list_needs_sync(stale_cutoff), 1), else_=0)), 0),
                func.max(ChannelValueList.last_synced_at),
            )
        )
    ).one()

    by_channel = dict(
        (
            await session.execute(
                select(ChannelValueList.channel_type, func.count(ChannelValueList.id))
                .group_by(ChannelValueList.channel_type)
            )
        ).all()
    )
    return {
        "total_lists": int(total),
        "active_lists": int(active),
        "synced_lists": int(synced),
        "failed_lists": int(failed),
        "pending_lists": int(pending),
        "by_channel": {k: int(v) for k, v in by_channel.items()},
        "total_values": int(total_values),
        "last_sync": last_sync,
        "needs_sync": int(needs_sync),
    }


async def last_discovery(session: AsyncSession) -> datetime | None:
    return (await session.execute(select(func.max(ChannelFieldDefinition.discovered_at)))).scalar_one_or_none()


async def last_sync(session: AsyncSession) -> datetime | None:
    fields_at = (await session.execute(select(func.max(ChannelFieldDefinition.last_verified_at)))).scalar_one_or_none()
    lists_at = (await session.execute(select(func.max(ChannelValueList.last_synced_at)))).scalar_one_or_none()
    candidates = [d for d in (fields_at, lists_at) if d is not None]
    return max(candidates) if candidates else None