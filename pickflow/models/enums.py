# pickflow/models/enums.py
from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ALLOCATED = "ALLOCATED"
    PICKING = "PICKING"
    PICKED = "PICKED"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"


class PickListStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PickListItemStatus(str, Enum):
    PENDING = "PENDING"
    PICKED = "PICKED"
    SHORT = "SHORT"
    SKIPPED = "SKIPPED"


class PickEventType(str, Enum):
    PICK_STARTED = "PICK_STARTED"
    ITEM_PICKED = "ITEM_PICKED"
    ITEM_SHORT = "ITEM_SHORT"
    ITEM_SKIPPED = "ITEM_SKIPPED"
    PICK_PAUSED = "PICK_PAUSED"
    PICK_COMPLETED = "PICK_COMPLETED"


class InventoryTransactionType(str, Enum):
    ALLOCATION = "ALLOCATION"


class ReservationPolicy(str, Enum):
    """库存不足时的处理口径：THROW 整单放弃；PARTIAL 能占多少占多少。"""

    THROW = "throw"
    PARTIAL = "partial"
