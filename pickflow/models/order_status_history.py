# pickflow/models/order_status_history.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import utcnow


class OrderStatusHistory(Base):
    """订单状态轨迹：只追加，不更新、不删除。"""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(16))
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("ix_order_status_history_order", "order_id", "id"),)

    def __repr__(self) -> str:
        return (
            f"<OrderStatusHistory order={self.order_id} "
            f"{self.previous_status}->{self.new_status} by={self.changed_by}>"
        )
