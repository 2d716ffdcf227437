from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    display_name: str | None = Field(default=None, max_length=200)
    marketplace_type: str = Field(min_length=1, max_length=40)
    marketplace_subtype: str | None = Field(default=None, max_length=80)

    # Secrets to encrypt and store (never returned)
    credentials: dict[str, Any] = Field(default_factory=dict)

    # Non-secret adapter options (currency, shop id, sandbox...)
    settings: dict[str, Any] = Field(default_factory=dict)

    is_active: bool = True


class AccountOut(BaseModel):
    id: str
    name: str
    display_name: str | None
    marketplace_type: str
    marketplace_subtype: str | None
    channel: str
    settings: dict[str, Any]
    is_active: bool
    last_connection_test: datetime | None = None
    connection_health: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestOut(BaseModel):
    success: bool
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    response_time_ms: int | None = None
    status_code: int | None = None
    endpoint: str | None = None
    error_type: str | None = None
    tested_at: datetime
