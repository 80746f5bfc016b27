# pickflow/models/allocation_claim.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import utcnow


class OrderAllocationClaim(Base):
    """
    订单分配占用：同一订单同一时刻最多一个在途的“预占 + 生成拣货单”请求。

    order_id 为主键，第二个请求插入时直接撞主键 → 快速失败。
    """

    __tablename__ = "order_allocation_claims"

    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), primary_key=True)
    claim_token: Mapped[str] = mapped_column(String(36), nullable=False)
    claimed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
