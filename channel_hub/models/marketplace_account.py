from datetime import datetime

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from channel_hub.core.ids import gen_id
from channel_hub.models.base import Base, AuditMixin, JSONType


class MarketplaceAccount(AuditMixin, Base):
    """
    A stored connection to one marketplace.

    Secrets live in `credentials_ciphertext` (Fernet-encrypted JSON, never returned by the API).
    `settings` holds the non-secret options an adapter may read (currency, locale, shop id...).
    """
    __tablename__ = "marketplace_accounts"
    __table_args__ = (
        UniqueConstraint("marketplace_type", "name", name="uq_marketplace_account_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("mka"))

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # "shopify" | "ebay" | "amazon" | "mirakl"
    marketplace_type: Mapped[str] = mapped_column(String(40), nullable=False)
    # operator code for mirakl ("bq", "debenhams", ...), empty for the others
    marketplace_subtype: Mapped[str | None] = mapped_column(String(80), nullable=True)

    credentials_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)
    settings: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_connection_test: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # {"current": {...}, "history": [...]}
    connection_test_result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    @property
    def channel_subtype(self) -> str:
        """Subtype used to key discovered schema rows."""
        return self.marketplace_subtype or self.name

    @property
    def channel_label(self) -> str:
        return f"{self.marketplace_type}:{self.channel_subtype}"
