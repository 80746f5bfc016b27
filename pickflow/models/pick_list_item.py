# pickflow/models/pick_list_item.py
from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.db.base import Base
from pickflow.models._ids import new_id
from pickflow.models.enums import PickListItemStatus

if TYPE_CHECKING:
    from pickflow.models.location import Location
    from pickflow.models.order import Order
    from pickflow.models.pick_list import PickList
    from pickflow.models.product_variant import ProductVariant


class PickListItem(Base):
    """
    拣货行：一个订单行在一个库位上的拣货指令。

    pick_sequence 在同一张拣货单内唯一且连续（1..N），跨订单统一编号。
    """

    __tablename__ = "pick_list_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    pick_list_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pick_lists.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id"), nullable=False
    )
    product_variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_variants.id"), nullable=False
    )
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False)
    quantity_to_pick: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_picked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pick_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PickListItemStatus] = mapped_column(
        SAEnum(PickListItemStatus, name="pick_list_item_status", native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=PickListItemStatus.PENDING,
    )

    pick_list: Mapped["PickList"] = relationship("PickList", back_populates="items")
    order: Mapped["Order"] = relationship(lazy="selectin")
    product_variant: Mapped["ProductVariant"] = relationship(lazy="selectin")
    location: Mapped["Location"] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("pick_list_id", "pick_sequence", name="uq_pick_list_items_sequence"),
        CheckConstraint("quantity_to_pick > 0", name="ck_pick_list_items_qty_pos"),
        CheckConstraint(
            "quantity_picked >= 0 AND quantity_picked <= quantity_to_pick",
            name="ck_pick_list_items_picked_range",
        ),
        Index("ix_pick_list_items_order_item", "order_item_id"),
        Index("ix_pick_list_items_order", "order_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PickListItem seq={self.pick_sequence} order_item={self.order_item_id} "
            f"loc={self.location_id} qty={self.quantity_to_pick} status={self.status}>"
        )
