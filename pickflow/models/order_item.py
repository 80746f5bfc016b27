# pickflow/models/order_item.py
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.db.base import Base
from pickflow.models._ids import new_id

if TYPE_CHECKING:
    from pickflow.models.order import Order
    from pickflow.models.product_variant import ProductVariant


class OrderItem(Base):
    """订单行：下单后数量不可变（本服务从不修改 quantity）。"""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_variants.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # 行号：决定生成拣货序列时的遍历顺序
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product_variant: Mapped["ProductVariant"] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
        Index("ix_order_items_order", "order_id"),
    )

    def __repr__(self) -> str:
        return f"<OrderItem id={self.id} order={self.order_id} variant={self.product_variant_id} qty={self.quantity}>"
