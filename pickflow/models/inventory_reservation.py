# pickflow/models/inventory_reservation.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import utcnow


class InventoryReservation(Base):
    """
    预占明细：某订单行在某库位占用了多少。

    订单行的“已预占量” = 该行所有预占明细 quantity 之和；
    再次预占时只补差额，避免同一订单重复占库存。
    """

    __tablename__ = "inventory_reservations"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id"), nullable=False
    )
    inventory_id: Mapped[int] = mapped_column(ForeignKey("inventory.id"), nullable=False)
    product_variant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_inventory_reservations_qty_pos"),
        Index("ix_inventory_reservations_order", "order_id"),
        Index("ix_inventory_reservations_item", "order_item_id"),
    )
