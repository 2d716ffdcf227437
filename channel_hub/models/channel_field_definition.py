from datetime import datetime

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from channel_hub.core.ids import gen_id
from channel_hub.models.base import Base, AuditMixin, JSONType


class ChannelFieldDefinition(AuditMixin, Base):
    """
    Canonical description of one product attribute a marketplace expects.
    Examples:
      channel_type=shopify, channel_subtype=main-store, category='', field_code=title
      channel_type=mirakl, channel_subtype=bq, category=garden-furniture, field_code=colour

    Absent subtype/category are stored as '' so the natural key stays unique.
    Rows are only ever upserted or deactivated by discovery.
    """
    __tablename__ = "channel_field_definitions"
    __table_args__ = (
        UniqueConstraint("channel_type", "channel_subtype", "category", "field_code", name="uq_channel_field"),
        Index("ix_channel_field_channel", "channel_type", "channel_subtype"),
        Index("ix_channel_field_verified", "last_verified_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cfd"))

    channel_type: Mapped[str] = mapped_column(String(40), nullable=False)
    channel_subtype: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(180), nullable=False, default="")
    field_code: Mapped[str] = mapped_column(String(180), nullable=False)

    field_label: Mapped[str] = mapped_column(String(255), nullable=False)
    # text | long-text | boolean | integer | decimal | list | date | media
    field_type: Mapped[str] = mapped_column(String(40), nullable=False, default="text")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    validation_rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    value_list_code: Mapped[str | None] = mapped_column(String(180), nullable=True)
    field_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
