"""Initial PawDose schema.

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_ITEM_TYPES = ("medication", "food", "supplement")
_ITEM_FREQUENCIES = ("1x_daily", "2x_daily", "4x_daily", "12h", "as_needed")
_INSTANCE_STATUSES = ("pending", "confirmed", "snoozed", "expired")
_OFFLINE_ACTION_TYPES = ("confirm", "snooze", "edit", "create")


def upgrade() -> None:
    """Create catalog, instance, history, and offline action tables."""
    op.create_table(
        "pets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("breed", sa.String(length=255), nullable=True),
        sa.Column("weight_kg", sa.Numeric(5, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "conflict_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("spacing_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("pet_id", sa.String(length=36), sa.ForeignKey("pets.id"), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "type",
            sa.Enum(*_ITEM_TYPES, name="item_type", native_enum=False),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("dose", sa.String(length=100), nullable=True),
        sa.Column(
            "frequency",
            sa.Enum(*_ITEM_FREQUENCIES, name="item_frequency", native_enum=False),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column(
            "conflict_group_id",
            sa.String(length=36),
            sa.ForeignKey("conflict_groups.id"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_items_pet_id", "items", ["pet_id"])
    op.create_index("idx_items_active", "items", ["active"])

    op.create_table(
        "item_schedules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("time_slot", sa.String(length=50), nullable=False),
        sa.Column("time_of_day", sa.Time(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_item_schedules_item_id", "item_schedules", ["item_id"])

    op.create_table(
        "daily_instances",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "schedule_id",
            sa.String(length=36),
            sa.ForeignKey("item_schedules.id"),
            nullable=True,
        ),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("instance_date", sa.Date(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*_INSTANCE_STATUSES, name="instance_status", native_enum=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_adhoc", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "schedule_id",
            "instance_date",
            name="uq_daily_instances_schedule_date",
        ),
    )
    op.create_index("idx_daily_instances_item_id", "daily_instances", ["item_id"])
    op.create_index("idx_daily_instances_date", "daily_instances", ["instance_date"])
    op.create_index("idx_daily_instances_status", "daily_instances", ["status"])

    op.create_table(
        "confirmation_history",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "instance_id",
            sa.String(length=36),
            sa.ForeignKey("daily_instances.id"),
            nullable=False,
        ),
        sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("edited_by", sa.String(length=255), nullable=True),
        sa.Column("previous_values", sa.JSON(), nullable=True),
        sa.Column("applied_action_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("instance_id", name="uq_confirmation_history_instance"),
    )
    op.create_index(
        "idx_confirmation_history_item_confirmed",
        "confirmation_history",
        ["item_id", "confirmed_at"],
    )

    op.create_table(
        "offline_actions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "type",
            sa.Enum(*_OFFLINE_ACTION_TYPES, name="offline_action_type", native_enum=False),
            nullable=False,
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("client_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("synced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("outcome", sa.String(length=50), nullable=True),
        sa.Column("outcome_detail", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop all PawDose tables."""
    op.drop_table("offline_actions")
    op.drop_index("idx_confirmation_history_item_confirmed", table_name="confirmation_history")
    op.drop_table("confirmation_history")
    op.drop_index("idx_daily_instances_status", table_name="daily_instances")
    op.drop_index("idx_daily_instances_date", table_name="daily_instances")
    op.drop_index("idx_daily_instances_item_id", table_name="daily_instances")
    op.drop_table("daily_instances")
    op.drop_index("idx_item_schedules_item_id", table_name="item_schedules")
    op.drop_table("item_schedules")
    op.drop_index("idx_items_active", table_name="items")
    op.drop_index("idx_items_pet_id", table_name="items")
    op.drop_table("items")
    op.drop_table("conflict_groups")
    op.drop_table("pets")
