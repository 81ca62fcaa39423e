"""
Alembic migration: initial fulfillment schema.

Creates the catalog, order, reservation, payment, dispatch and audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:12:44.517303
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

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")

ORDER_STATUS = sa.Enum(
    "pending", "processing", "dispatched", "delivered", "cancelled", name="order_status"
)
PAYMENT_STATUS = sa.Enum("pending", "completed", "failed", name="payment_status")
DISCOUNT_TYPE = sa.Enum("percentage", "fixed", name="discount_type")
INVOICE_STATUS = sa.Enum("paid", "unpaid", "overdue", name="invoice_status")
WEBHOOK_EVENT_STATUS = sa.Enum("received", "processed", "failed", name="webhook_event_status")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False, comment="Unique identifier for the record"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
            comment="Timestamp when record was created",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
            comment="Timestamp when record was last updated",
        ),
    ]


def upgrade() -> None:
    """
    Create all tables, constraints and indexes.
    """
    op.create_table(
        "products",
        *_base_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("brand", sa.String(100), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, comment="List price"),
        sa.Column("discount_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )

    op.create_table(
        "courier_riders",
        *_base_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(50), nullable=False),
        sa.Column("license_number", sa.String(100), nullable=True),
        sa.Column("vehicle_type", sa.String(50), nullable=True),
        sa.Column("current_location", JSON, nullable=True),
        sa.Column("rating", sa.Numeric(3, 2), nullable=True),
        sa.Column("total_deliveries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "discount_codes",
        *_base_columns(),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_type", DISCOUNT_TYPE, nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sa.CheckConstraint("discount_value >= 0", name="ck_discount_codes_value_non_negative"),
        sa.CheckConstraint("used_count >= 0", name="ck_discount_codes_used_non_negative"),
        sa.CheckConstraint("valid_until > valid_from", name="ck_discount_codes_window"),
    )

    op.create_table(
        "orders",
        *_base_columns(),
        sa.Column("order_number", sa.String(50), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_code_used", sa.String(50), nullable=True),
        sa.Column("shipping_address", JSON, nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False, server_default="pending"),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("assigned_courier_id", sa.Uuid(), nullable=True),
        sa.Column("fraud_risk_score", sa.Integer(), nullable=True),
        sa.Column("fraud_flags", JSON, nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.ForeignKeyConstraint(
            ["assigned_courier_id"], ["courier_riders.id"], ondelete="SET NULL"
        ),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_orders_discount_non_negative"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_user_created", "orders", ["user_id", "created_at"])

    op.create_table(
        "order_items",
        *_base_columns(),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "stock_reservations",
        *_base_columns(),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_positive"),
    )
    op.create_index(
        "ix_stock_reservations_product_expires",
        "stock_reservations",
        ["product_id", "expires_at"],
    )
    op.create_index("ix_stock_reservations_order", "stock_reservations", ["order_id"])

    op.create_table(
        "shopping_cart",
        *_base_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "product_id", name="uq_shopping_cart_user_product"),
        sa.CheckConstraint("quantity > 0", name="ck_shopping_cart_quantity_positive"),
    )
    op.create_index("ix_shopping_cart_user_id", "shopping_cart", ["user_id"])

    op.create_table(
        "webhook_events",
        *_base_columns(),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("status", WEBHOOK_EVENT_STATUS, nullable=False, server_default="received"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )

    op.create_table(
        "invoices",
        *_base_columns(),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", INVOICE_STATUS, nullable=False, server_default="paid"),
        sa.Column("pdf_url", sa.String(500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("order_id"),
        sa.UniqueConstraint("invoice_number"),
    )

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=True),
        sa.Column("changes", JSON, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    """
    Drop all tables and enum types in reverse dependency order.
    """
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("invoices")
    op.drop_table("webhook_events")
    op.drop_index("ix_shopping_cart_user_id", table_name="shopping_cart")
    op.drop_table("shopping_cart")
    op.drop_index("ix_stock_reservations_order", table_name="stock_reservations")
    op.drop_index("ix_stock_reservations_product_expires", table_name="stock_reservations")
    op.drop_table("stock_reservations")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_user_created", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
    op.drop_table("discount_codes")
    op.drop_table("courier_riders")
    op.drop_table("products")

    bind = op.get_bind()
    for enum_type in (
        WEBHOOK_EVENT_STATUS,
        INVOICE_STATUS,
        DISCOUNT_TYPE,
        PAYMENT_STATUS,
        ORDER_STATUS,
    ):
        enum_type.drop(bind, checkfirst=True)
