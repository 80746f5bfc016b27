# pickflow/models/pick_list.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.db.base import Base
from pickflow.models._ids import new_id, utcnow
from pickflow.models.enums import PickListStatus

if TYPE_CHECKING:
    from pickflow.models.pick_list_item import PickListItem
    from pickflow.models.user import User


class PickList(Base):
    """
    拣货单头（一批订单 → 一张拣货单）。

    - total_items  ：创建时 = 拣货行数
    - picked_items ：创建时 = 0，由拣货执行流程（本服务之外）推进
    - 头 / 行 / 创建事件同一事务写入，不存在“半张”拣货单
    """

    __tablename__ = "pick_lists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    batch_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[PickListStatus] = mapped_column(
        SAEnum(PickListStatus, name="pick_list_status", native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=PickListStatus.ASSIGNED,
    )
    assigned_to: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"))
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    picked_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"))

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

    items: Mapped[List["PickListItem"]] = relationship(
        "PickListItem",
        back_populates="pick_list",
        order_by="PickListItem.pick_sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    assigned_user: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[assigned_to], lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("picked_items >= 0", name="ck_pick_lists_picked_nonneg"),
        Index("ix_pick_lists_status", "status"),
        Index("ix_pick_lists_assigned", "assigned_to"),
        Index("ix_pick_lists_created", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PickList id={self.id} batch={self.batch_number} "
            f"status={self.status} items={self.total_items}>"
        )
