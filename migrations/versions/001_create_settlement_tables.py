"""
Alembic migration: Create order settlement tables.

Creates the vendor, product and order tables the settlement core maps, the
vendor ledger (balances and transactions), refund settlement progress,
processed webhook events, inventory alerts, shipping labels and the audit
log.

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES = {
    "order_status": (
        "pending",
        "paid",
        "shipped",
        "delivered",
        "cancelled",
        "refunded",
    ),
    "order_payment_status": ("pending", "processing", "succeeded", "refunded", "failed"),
    "cancellation_status": ("none", "requested", "approved", "rejected"),
    "refund_status": ("none", "pending", "succeeded", "failed"),
    "transaction_type": ("sale", "refund", "payout", "adjustment"),
    "transaction_status": ("pending", "completed", "failed"),
    "inventory_alert_type": ("low_stock", "out_of_stock"),
    "audit_severity": ("info", "warning", "error", "critical"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
            comment="Unique identifier for the record",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="Timestamp when record was created",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="Timestamp when record was last updated",
        ),
    ]


def _money(name: str, comment: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=nullable,
        server_default=sa.text("0") if default else None,
        comment=comment,
    )


def upgrade() -> None:
    """
    Upgrade database schema to add the settlement tables.

    Enum types are created first; tables follow in foreign key order.
    """
    bind = op.get_bind()
    for name in ENUM_TYPES:
        postgresql.ENUM(*ENUM_TYPES[name], name=name).create(bind, checkfirst=True)

    op.create_table(
        "vendors",
        *_base_columns(),
        sa.Column("business_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column(
            "enable_auto_deactivate",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_vendors"),
        sa.UniqueConstraint("email", name="uq_vendors_email"),
    )

    op.create_table(
        "products",
        *_base_columns(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.ForeignKeyConstraint(
            ["vendor_id"], ["vendors.id"], name="fk_products_vendor_id", ondelete="CASCADE"
        ),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )
    op.create_index("ix_products_vendor_id", "products", ["vendor_id"])

    op.create_table(
        "orders",
        *_base_columns(),
        sa.Column("order_number", sa.String(length=50), nullable=False),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("guest_email", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        _money("subtotal", "Items subtotal"),
        _money("tax", "Tax amount"),
        _money("shipping", "Shipping amount"),
        _money("total", "Amount charged to the customer", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="MXN"),
        sa.Column("status", _enum("order_status"), nullable=False, server_default="pending"),
        sa.Column(
            "payment_status",
            _enum("order_payment_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "cancellation_status",
            _enum("cancellation_status"),
            nullable=False,
            server_default="none",
        ),
        sa.Column("refund_status", _enum("refund_status"), nullable=False, server_default="none"),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("refund_id", sa.String(length=255), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("carrier", sa.String(length=50), nullable=True),
        sa.Column("tracking_url", sa.String(length=500), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "tracking_history",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
        sa.ForeignKeyConstraint(
            ["vendor_id"], ["vendors.id"], name="fk_orders_vendor_id", ondelete="RESTRICT"
        ),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.UniqueConstraint("payment_intent_id", name="uq_orders_payment_intent_id"),
        sa.UniqueConstraint("refund_id", name="uq_orders_refund_id"),
        sa.CheckConstraint(
            "(user_id IS NULL) <> (guest_email IS NULL)", name="ck_orders_user_xor_guest"
        ),
        sa.CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
    )
    op.create_index("ix_orders_vendor_id", "orders", ["vendor_id"])
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_vendor_status", "orders", ["vendor_id", "status"])
    op.create_index("ix_orders_cancellation_status", "orders", ["cancellation_status"])

    op.create_table(
        "order_items",
        *_base_columns(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("price", "Unit price at checkout", default=False),
        _money("total", "Line total", default=False),
        sa.PrimaryKeyConstraint("id", name="pk_order_items"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], name="fk_order_items_order_id", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name="fk_order_items_product_id",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_product_id", "order_items", ["product_id"])

    op.create_table(
        "order_status_history",
        *_base_columns(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event", sa.String(length=50), nullable=False),
        sa.Column("from_state", sa.String(length=50), nullable=False),
        sa.Column("to_state", sa.String(length=50), nullable=False),
        sa.Column("changed_by", sa.String(length=255), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_order_status_history"),
        sa.ForeignKeyConstraint(
            ["order_id"],
            ["orders.id"],
            name="fk_order_status_history_order_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_order_status_history_order_id", "order_status_history", ["order_id"])
    op.create_index(
        "ix_order_status_history_order_created",
        "order_status_history",
        ["order_id", "created_at"],
    )

    op.create_table(
        "vendor_balances",
        *_base_columns(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        _money("available_balance", "Withdrawable balance"),
        _money("pending_balance", "Earned but not yet cleared"),
        _money("reserved_balance", "Held back for disputes"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="MXN"),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_vendor_balances"),
        sa.ForeignKeyConstraint(
            ["vendor_id"],
            ["vendors.id"],
            name="fk_vendor_balances_vendor_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("vendor_id", name="uq_vendor_balances_vendor_id"),
    )

    op.create_table(
        "transactions",
        *_base_columns(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("type", _enum("transaction_type"), nullable=False),
        _money("amount", "Signed amount", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="MXN"),
        sa.Column(
            "status", _enum("transaction_status"), nullable=False, server_default="pending"
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("stripe_charge_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_refund_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_payout_id", sa.String(length=255), nullable=True),
        sa.Column(
            "balance_transaction", postgresql.JSONB(astext_type=sa.Text()), nullable=False
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_transactions"),
        sa.ForeignKeyConstraint(
            ["vendor_id"],
            ["vendors.id"],
            name="fk_transactions_vendor_id",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], name="fk_transactions_order_id", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_transactions_order_id", "transactions", ["order_id"])
    op.create_index("ix_transactions_stripe_refund_id", "transactions", ["stripe_refund_id"])
    op.create_index(
        "ix_transactions_vendor_created", "transactions", ["vendor_id", "created_at"]
    )
    op.create_index("ix_transactions_vendor_type", "transactions", ["vendor_id", "type"])

    op.create_table(
        "refund_settlements",
        *_base_columns(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("refund_id", sa.String(length=255), nullable=True),
        _money("amount", "Amount refunded", default=False),
        sa.Column(
            "requires_refund", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("gateway_refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stock_restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("balance_reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_refund_settlements"),
        sa.ForeignKeyConstraint(
            ["order_id"],
            ["orders.id"],
            name="fk_refund_settlements_order_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["vendor_id"],
            ["vendors.id"],
            name="fk_refund_settlements_vendor_id",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("order_id", name="uq_refund_settlements_order_id"),
    )

    op.create_table(
        "processed_webhook_events",
        *_base_columns(),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("result", sa.String(length=50), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_processed_webhook_events"),
        sa.UniqueConstraint("event_id", name="uq_processed_webhook_events_event_id"),
    )

    op.create_table(
        "inventory_alerts",
        *_base_columns(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("alert_type", _enum("inventory_alert_type"), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_inventory_alerts"),
        sa.ForeignKeyConstraint(
            ["vendor_id"],
            ["vendors.id"],
            name="fk_inventory_alerts_vendor_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["product_id"],
            ["products.id"],
            name="fk_inventory_alerts_product_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "vendor_id",
            "product_id",
            "alert_type",
            name="uq_inventory_alerts_vendor_product_type",
        ),
        sa.CheckConstraint("threshold >= 0", name="ck_inventory_alerts_threshold"),
    )

    op.create_table(
        "shipping_labels",
        *_base_columns(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("carrier", sa.String(length=50), nullable=False),
        sa.Column("service_type", sa.String(length=100), nullable=True),
        sa.Column("label_url", sa.String(length=500), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        _money("cost", "Label cost"),
        sa.Column("weight", sa.Numeric(precision=8, scale=3), nullable=True),
        sa.Column("dimensions", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_shipping_labels"),
        sa.ForeignKeyConstraint(
            ["order_id"],
            ["orders.id"],
            name="fk_shipping_labels_order_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["vendor_id"],
            ["vendors.id"],
            name="fk_shipping_labels_vendor_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_shipping_labels_order_id", "shipping_labels", ["order_id"])

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("severity", _enum("audit_severity"), nullable=False, server_default="info"),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("user_type", sa.String(length=50), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=100), nullable=True),
        sa.Column("resource_type", sa.String(length=50), nullable=True),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_action_created", "audit_logs", ["action", "created_at"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])


def downgrade() -> None:
    """Drop the settlement tables and enum types in reverse dependency order."""
    for table in (
        "audit_logs",
        "shipping_labels",
        "inventory_alerts",
        "processed_webhook_events",
        "refund_settlements",
        "transactions",
        "vendor_balances",
        "order_status_history",
        "order_items",
        "orders",
        "products",
        "vendors",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUM_TYPES)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
