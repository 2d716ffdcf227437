from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from channel_hub.core.config import settings
from channel_hub.marketplaces.client import MarketplaceClient
from channel_hub.marketplaces.results import ConnectionTestResult, ErrorType, UnsupportedMarketplaceError
from channel_hub.models.marketplace_account import MarketplaceAccount

log = logging.getLogger(__name__)


def _entry(result: ConnectionTestResult) -> dict[str, Any]:
    return {
        "status": "healthy" if result.success else "failing",
        **result.to_dict(),
    }


def record_connection_test(
    account: MarketplaceAccount,
    result: ConnectionTestResult,
    *,
    history_limit: int | None = None,
) -> dict[str, Any]:
    """Store the result as the account's current health and append it to a bounded history (oldest first)."""
    limit = history_limit if history_limit is not None else settings.connection_test_history
    entry = _entry(result)
    previous = account.connection_test_result or {}
    # a limit of 0 keeps no history
    history = [*previous.get("history", []), entry][-limit:] if limit > 0 else []

    # reassign rather than mutate so the JSON column is flagged dirty
    account.connection_test_result = {"current": entry, "history": history}
    account.last_connection_test = result.tested_at
    return entry


def connection_health(account: MarketplaceAccount) -> dict[str, Any]:
    stored = account.connection_test_result or {}
    current = stored.get("current") or {"status": "unknown", "tested_at": None, "message": None}
    history = stored.get("history", [])
    successes = sum(1 for h in history if h.get("success"))
    return {
        "status": current.get("status", "unknown"),
        "tested_at": current.get("tested_at"),
        "message": current.get("message"),
        "response_time_ms": current.get("response_time_ms"),
        "tests": len(history),
        "success_rate": round(successes / len(history) * 100, 1) if history else None,
    }


async def run_connection_test(
    session: AsyncSession,
    client: MarketplaceClient,
    account: MarketplaceAccount,
) -> ConnectionTestResult:
    try:
        adapter = client.adapter_for(account)
    except UnsupportedMarketplaceError as e:
        result = ConnectionTestResult(
            success=False,
            message=str(e),
            error_type=ErrorType.CONFIGURATION_ERROR,
        )
    else:
        result = await adapter.test_connection()

    record_connection_test(account, result)
    await session.commit()
    log.info(
        "connection test account=%s marketplace=%s success=%s status=%s",
        account.id, account.marketplace_type, result.success, result.status_code,
    )
    return result
