"""Initial schema: product deliveries and their activity log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- product_deliveries (one row per ordered product line item)
- delivery_events (activity log, one row per mutation)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "delivery_status": ("pending", "ready", "delivered", "confirmed", "disputed"),
    "delivery_method": ("in_person", "locker", "front_desk", "shipped"),
    "reschedule_status": ("pending", "approved", "rejected"),
    "resolution_type": ("refund", "redeliver", "partial_refund", "closed"),
    "actor_role": ("trainer", "client", "order_creator", "manager"),
    "delivery_event_type": (
        "created",
        "scheduled",
        "marked_ready",
        "marked_delivered",
        "receipt_confirmed",
        "issue_reported",
        "reschedule_requested",
        "reschedule_approved",
        "reschedule_rejected",
        "dispute_resolved",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def upgrade() -> None:
    """Apply migration: create delivery tables."""
    for name in ENUM_TYPES:
        _enum(name).create(op.get_bind(), checkfirst=True)

    op.create_table(
        "product_deliveries",
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("order_item_id", sa.Uuid(), nullable=False),
        sa.Column("trainer_id", sa.Uuid(), nullable=False),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", _enum("delivery_status"), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("delivery_method", _enum("delivery_method"), nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trainer_notes", sa.Text(), nullable=True),
        sa.Column("client_notes", sa.Text(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("reschedule_status", _enum("reschedule_status"), nullable=True),
        sa.Column("reschedule_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reschedule_proposed_date", sa.Date(), nullable=True),
        sa.Column("reschedule_reason", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Uuid(), nullable=True),
        sa.Column("resolution_type", _enum("resolution_type"), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "quantity > 0",
            name=op.f("ck_product_deliveries_quantity_positive"),
        ),
        sa.PrimaryKeyConstraint("delivery_id", name=op.f("pk_product_deliveries")),
        sa.UniqueConstraint(
            "order_id",
            "order_item_id",
            name=op.f("uq_product_deliveries_order_item"),
        ),
    )
    op.create_index(
        "ix_product_deliveries_trainer_status",
        "product_deliveries",
        ["trainer_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_product_deliveries_client_status",
        "product_deliveries",
        ["client_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_product_deliveries_trainer_reschedule",
        "product_deliveries",
        ["trainer_id", "reschedule_status"],
        unique=False,
    )

    op.create_table(
        "delivery_events",
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("delivery_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", _enum("delivery_event_type"), nullable=False),
        sa.Column(
            "event_time",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("actor_role", _enum("actor_role"), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("event_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["product_deliveries.delivery_id"],
            name=op.f("fk_delivery_events_delivery_id_product_deliveries"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("event_id", name=op.f("pk_delivery_events")),
    )
    op.create_index(
        "ix_delivery_events_delivery_time",
        "delivery_events",
        ["delivery_id", "event_time"],
        unique=False,
    )


def downgrade() -> None:
    """Revert migration: drop delivery tables and enum types."""
    op.drop_index("ix_delivery_events_delivery_time", table_name="delivery_events")
    op.drop_table("delivery_events")
    op.drop_index("ix_product_deliveries_trainer_reschedule", table_name="product_deliveries")
    op.drop_index("ix_product_deliveries_client_status", table_name="product_deliveries")
    op.drop_index("ix_product_deliveries_trainer_status", table_name="product_deliveries")
    op.drop_table("product_deliveries")
    for name in reversed(ENUM_TYPES):
        _enum(name).drop(op.get_bind(), checkfirst=True)
