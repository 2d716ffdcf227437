from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AccountDiscoveryOut(BaseModel):
    success: bool
    fields_discovered: int | None = None
    value_lists_discovered: int | None = None
    required_fields: int | None = None
    optional_fields: int | None = None
    error: str | None = None
    error_type: str | None = None


class DiscoveryItem(BaseModel):
    account_id: str
    channel: str
    result: AccountDiscoveryOut


class DiscoverySummary(BaseModel):
    total_accounts: int
    successful: int
    failed: int
    total_fields: int
    total_value_lists: int
    total_required_fields: int
    total_optional_fields: int
    errors: list[dict[str, Any]] = Field(default_factory=list)


class DiscoveryRunOut(BaseModel):
    processed_accounts: int
    results: list[DiscoveryItem]
    summary: DiscoverySummary


class HealthReportOut(BaseModel):
    field_health: dict[str, Any]
    value_list_health: dict[str, Any]
    overall_health: dict[str, Any]


class DiscoveryHealthOut(BaseModel):
    overall: HealthReportOut
    by_channel: dict[str, HealthReportOut] = Field(default_factory=dict)


class DiscoveryStatisticsOut(BaseModel):
    field_definitions: dict[str, Any]
    value_lists: dict[str, Any]
    sync_accounts: int
    last_discovery: datetime | None = None
    last_sync: datetime | None = None
    discovery_health: HealthReportOut
