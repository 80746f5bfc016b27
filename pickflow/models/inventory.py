# pickflow/models/inventory.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.db.base import Base
from pickflow.models._ids import utcnow

if TYPE_CHECKING:
    from pickflow.models.location import Location
    from pickflow.models.product_variant import ProductVariant


class InventoryRecord(Base):
    """
    库存台账（按 (product_variant, location) 唯一）。

    - quantity_on_hand  ：在库数量
    - quantity_reserved ：已预占数量
    - quantity_available：派生值 = on_hand - reserved，不单独落库
    - version           ：乐观并发版本号，每次预占 +1

    不变量：0 ≤ quantity_reserved ≤ quantity_on_hand（服务层 + CHECK 双保险）
    """

    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    product_variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_variants.id"), nullable=False
    )
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    product_variant: Mapped["ProductVariant"] = relationship(lazy="selectin")
    location: Mapped["Location"] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("product_variant_id", "location_id", name="uq_inventory_variant_location"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_nonneg"),
        CheckConstraint(
            "quantity_reserved >= 0 AND quantity_reserved <= quantity_on_hand",
            name="ck_inventory_reserved_within_on_hand",
        ),
        Index("ix_inventory_variant_on_hand", "product_variant_id", "quantity_on_hand"),
    )

    @property
    def quantity_available(self) -> int:
        return int(self.quantity_on_hand) - int(self.quantity_reserved)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} variant={self.product_variant_id} "
            f"loc={self.location_id} on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved} v={self.version}>"
        )
