# pickflow/models/pick_event.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import utcnow
from pickflow.models.enums import PickEventType


class PickEvent(Base):
    """拣货单审计轨迹（创建 / 拣货 / 短拣 / 跳过），只用于追溯，不参与控制流。"""

    __tablename__ = "pick_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    pick_list_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pick_lists.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[PickEventType] = mapped_column(
        SAEnum(
            PickEventType,
            name="pick_event_type",
            native_enum=False,
            length=32,
            validate_strings=True,
        ),
        nullable=False,
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_pick_events_pick_list", "pick_list_id"),)
