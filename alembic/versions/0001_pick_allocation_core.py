"""pick allocation core: users / catalog / inventory / orders / pick lists

Revision ID: 0001_pick_allocation_core
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_pick_allocation_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """
    拣货分配核心表：

    - inventory：CHECK 0 ≤ reserved ≤ on_hand；(variant, location) 唯一
    - pick_list_items：(pick_list_id, pick_sequence) 唯一
    - order_status_history / pick_events / inventory_transactions：只追加
    - order_allocation_claims：订单级互斥
    """
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("full_name", sa.String(128)),
        sa.Column("email", sa.String(255)),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "product_variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    op.create_table(
        "locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("zone", sa.String(32)),
    )

    op.create_table(
        "inventory",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column(
            "product_variant_id", sa.String(36), sa.ForeignKey("product_variants.id"), nullable=False
        ),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _ts("updated_at"),
        sa.UniqueConstraint(
            "product_variant_id", "location_id", name="uq_inventory_variant_location"
        ),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
        sa.CheckConstraint(
            "quantity_reserved >= 0 AND quantity_reserved <= quantity_on_hand",
            name="ck_inventory_reserved_within_on_hand",
        ),
    )
    op.create_index(
        "ix_inventory_variant_on_hand", "inventory", ["product_variant_id", "quantity_on_hand"]
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("picking_assigned_to", sa.String(36), sa.ForeignKey("users.id")),
        sa.Column("picking_assigned_at", sa.DateTime(timezone=True)),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "product_variant_id", sa.String(36), sa.ForeignKey("product_variants.id"), nullable=False
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
    )
    op.create_index("ix_order_items_order", "order_items", ["order_id"])

    op.create_table(
        "order_status_history",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("previous_status", sa.String(16)),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("changed_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _ts("changed_at"),
        sa.Column("notes", sa.Text()),
    )
    op.create_index("ix_order_status_history_order", "order_status_history", ["order_id", "id"])

    op.create_table(
        "inventory_reservations",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("order_item_id", sa.String(36), sa.ForeignKey("order_items.id"), nullable=False),
        sa.Column("inventory_id", BIGINT_PK, sa.ForeignKey("inventory.id"), nullable=False),
        sa.Column("product_variant_id", sa.String(36), nullable=False),
        sa.Column("location_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        _ts("created_at"),
        sa.CheckConstraint("quantity > 0", name="ck_inventory_reservations_qty_pos"),
    )
    op.create_index("ix_inventory_reservations_order", "inventory_reservations", ["order_id"])
    op.create_index("ix_inventory_reservations_item", "inventory_reservations", ["order_item_id"])

    op.create_table(
        "inventory_transactions",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column("product_variant_id", sa.String(36), nullable=False),
        sa.Column("location_id", sa.String(36), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36)),
        sa.Column("notes", sa.Text()),
        _ts("created_at"),
    )
    op.create_index(
        "ix_inventory_transactions_ref", "inventory_transactions", ["reference_type", "reference_id"]
    )

    op.create_table(
        "pick_lists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_number", sa.String(32), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("assigned_to", sa.String(36), sa.ForeignKey("users.id")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("picked_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("picked_items >= 0", name="ck_pick_lists_picked_nonneg"),
    )
    op.create_index("ix_pick_lists_status", "pick_lists", ["status"])
    op.create_index("ix_pick_lists_assigned", "pick_lists", ["assigned_to"])
    op.create_index("ix_pick_lists_created", "pick_lists", ["created_at"])

    op.create_table(
        "pick_list_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "pick_list_id",
            sa.String(36),
            sa.ForeignKey("pick_lists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("order_item_id", sa.String(36), sa.ForeignKey("order_items.id"), nullable=False),
        sa.Column(
            "product_variant_id", sa.String(36), sa.ForeignKey("product_variants.id"), nullable=False
        ),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("quantity_to_pick", sa.Integer(), nullable=False),
        sa.Column("quantity_picked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pick_sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.UniqueConstraint("pick_list_id", "pick_sequence", name="uq_pick_list_items_sequence"),
        sa.CheckConstraint("quantity_to_pick > 0", name="ck_pick_list_items_qty_pos"),
        sa.CheckConstraint(
            "quantity_picked >= 0 AND quantity_picked <= quantity_to_pick",
            name="ck_pick_list_items_picked_range",
        ),
    )
    op.create_index("ix_pick_list_items_order_item", "pick_list_items", ["order_item_id"])
    op.create_index("ix_pick_list_items_order", "pick_list_items", ["order_id"])

    op.create_table(
        "pick_events",
        sa.Column("id", BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column(
            "pick_list_id",
            sa.String(36),
            sa.ForeignKey("pick_lists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id")),
        sa.Column("notes", sa.Text()),
        _ts("created_at"),
    )
    op.create_index("ix_pick_events_pick_list", "pick_events", ["pick_list_id"])

    op.create_table(
        "order_allocation_claims",
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), primary_key=True),
        sa.Column("claim_token", sa.String(36), nullable=False),
        sa.Column("claimed_by", sa.String(36), nullable=False),
        _ts("claimed_at"),
    )


def downgrade() -> None:
    op.drop_table("order_allocation_claims")
    op.drop_index("ix_pick_events_pick_list", table_name="pick_events")
    op.drop_table("pick_events")
    op.drop_index("ix_pick_list_items_order", table_name="pick_list_items")
    op.drop_index("ix_pick_list_items_order_item", table_name="pick_list_items")
    op.drop_table("pick_list_items")
    op.drop_index("ix_pick_lists_created", table_name="pick_lists")
    op.drop_index("ix_pick_lists_assigned", table_name="pick_lists")
    op.drop_index("ix_pick_lists_status", table_name="pick_lists")
    op.drop_table("pick_lists")
    op.drop_index("ix_inventory_transactions_ref", table_name="inventory_transactions")
    op.drop_table("inventory_transactions")
    op.drop_index("ix_inventory_reservations_item", table_name="inventory_reservations")
    op.drop_index("ix_inventory_reservations_order", table_name="inventory_reservations")
    op.drop_table("inventory_reservations")
    op.drop_index("ix_order_status_history_order", table_name="order_status_history")
    op.drop_table("order_status_history")
    op.drop_index("ix_order_items_order", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_inventory_variant_on_hand", table_name="inventory")
    op.drop_table("inventory")
    op.drop_table("locations")
    op.drop_table("product_variants")
    op.drop_table("users")
