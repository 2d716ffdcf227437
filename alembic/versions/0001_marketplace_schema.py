from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_marketplace_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "marketplace_accounts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("marketplace_type", sa.String(length=40), nullable=False),
        sa.Column("marketplace_subtype", sa.String(length=80), nullable=True),

        sa.Column("credentials_ciphertext", sa.Text(), nullable=True),
        sa.Column("settings", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),

        sa.Column("last_connection_test", sa.DateTime(timezone=True), nullable=True),
        sa.Column("connection_test_result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("marketplace_type", "name", name="uq_marketplace_account_name"),
    )

    op.create_table(
        "channel_field_definitions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("channel_type", sa.String(length=40), nullable=False),
        sa.Column("channel_subtype", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=180), nullable=False, server_default=""),
        sa.Column("field_code", sa.String(length=180), nullable=False),

        sa.Column("field_label", sa.String(length=255), nullable=False),
        sa.Column("field_type", sa.String(length=40), nullable=False, server_default="text"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("description", sa.Text(), nullable=True),

        sa.Column("validation_rules", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("value_list_code", sa.String(length=180), nullable=True),
        sa.Column("field_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),

        sa.Column("discovered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("channel_type", "channel_subtype", "category", "field_code", name="uq_channel_field"),
    )
    op.create_index("ix_channel_field_channel", "channel_field_definitions", ["channel_type", "channel_subtype"])
    op.create_index("ix_channel_field_verified", "channel_field_definitions", ["last_verified_at"])

    op.create_table(
        "channel_value_lists",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("channel_type", sa.String(length=40), nullable=False),
        sa.Column("channel_subtype", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("list_code", sa.String(length=180), nullable=False),

        sa.Column("list_name", sa.String(length=255), nullable=False),
        sa.Column("list_description", sa.Text(), nullable=True),

        sa.Column("allowed_values", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("value_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("values_count", sa.Integer(), nullable=False, server_default="0"),

        sa.Column("discovered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("channel_type", "channel_subtype", "list_code", name="uq_channel_value_list"),
    )
    op.create_index("ix_channel_value_list_status", "channel_value_lists", ["sync_status"])


def downgrade():
    op.drop_index("ix_channel_value_list_status", table_name="channel_value_lists")
    op.drop_table("channel_value_lists")
    op.drop_index("ix_channel_field_verified", table_name="channel_field_definitions")
    op.drop_index("ix_channel_field_channel", table_name="channel_field_definitions")
    op.drop_table("channel_field_definitions")
    op.drop_table("marketplace_accounts")
