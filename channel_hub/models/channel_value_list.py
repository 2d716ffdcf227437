from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from channel_hub.core.ids import gen_id
from channel_hub.models.base import Base, AuditMixin, JSONType


SYNC_STATUSES = ("synced", "failed", "pending")


class ChannelValueList(AuditMixin, Base):
    """
    Allowed values for a constrained marketplace field (colours, conditions, sizes...).
    `allowed_values` keeps the upstream order; `value_metadata` maps code -> label.
    """
    __tablename__ = "channel_value_lists"
    __table_args__ = (
        UniqueConstraint("channel_type", "channel_subtype", "list_code", name="uq_channel_value_list"),
        Index("ix_channel_value_list_status", "sync_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cvl"))

    channel_type: Mapped[str] = mapped_column(String(40), nullable=False)
    channel_subtype: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    list_code: Mapped[str] = mapped_column(String(180), nullable=False)

    list_name: Mapped[str] = mapped_column(String(255), nullable=False)
    list_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    allowed_values: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    value_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    values_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sync_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
