# pickflow/models/inventory_transaction.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.db.base import Base
from pickflow.models._ids import utcnow
from pickflow.models.enums import InventoryTransactionType


class InventoryTransaction(Base):
    """
    库存流水（审计用，只追加）。

    ALLOCATION：预占，quantity_change 记为负数（可用量减少）。
    """

    __tablename__ = "inventory_transactions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    product_variant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), nullable=False)
    transaction_type: Mapped[InventoryTransactionType] = mapped_column(
        SAEnum(
            InventoryTransactionType,
            name="inventory_transaction_type",
            native_enum=False,
            length=32,
            validate_strings=True,
        ),
        nullable=False,
    )
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_inventory_transactions_ref", "reference_type", "reference_id"),)
