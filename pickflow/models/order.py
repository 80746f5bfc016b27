# pickflow/models/order.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.db.base import Base
from pickflow.models._ids import new_id, utcnow
from pickflow.models.enums import OrderStatus

if TYPE_CHECKING:
    from pickflow.models.order_item import OrderItem


class Order(Base):
    """
    销售订单主档。

    - status 只允许经由 OrderStatusTracker 变更（每次变更落一条 order_status_history）
    - picking_assigned_to / picking_assigned_at：进入 PICKING 时写入
    """

    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_status", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))

    picking_assigned_to: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"))
    picking_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} no={self.order_number!r} status={self.status}>"
