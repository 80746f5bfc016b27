# pickflow/models/location.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import new_id


class Location(Base):
    """库位（货架格 / 拣货位）"""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    zone: Mapped[Optional[str]] = mapped_column(String(32))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r}>"
