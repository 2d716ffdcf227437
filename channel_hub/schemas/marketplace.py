from typing import Any

from pydantic import BaseModel, Field


class MarketplaceOut(BaseModel):
    marketplace: str
    display_name: str
    docs_url: str | None = None
    fields: dict[str, dict[str, Any]] = Field(default_factory=dict)
    auth_methods: list[dict[str, Any]] = Field(default_factory=list)
    capabilities: dict[str, Any] = Field(default_factory=dict)
