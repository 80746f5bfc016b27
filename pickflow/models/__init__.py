# pickflow/models/__init__.py
from pickflow.models.allocation_claim import OrderAllocationClaim
from pickflow.models.enums import (
    InventoryTransactionType,
    OrderStatus,
    PickEventType,
    PickListItemStatus,
    PickListStatus,
    ReservationPolicy,
)
from pickflow.models.inventory import InventoryRecord
from pickflow.models.inventory_reservation import InventoryReservation
from pickflow.models.inventory_transaction import InventoryTransaction
from pickflow.models.location import Location
from pickflow.models.order import Order
from pickflow.models.order_item import OrderItem
from pickflow.models.order_status_history import OrderStatusHistory
from pickflow.models.pick_event import PickEvent
from pickflow.models.pick_list import PickList
from pickflow.models.pick_list_item import PickListItem
from pickflow.models.product_variant import ProductVariant
from pickflow.models.user import User

__all__ = [
    "InventoryRecord",
    "InventoryReservation",
    "InventoryTransaction",
    "InventoryTransactionType",
    "Location",
    "Order",
    "OrderAllocationClaim",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "PickEvent",
    "PickEventType",
    "PickList",
    "PickListItem",
    "PickListItemStatus",
    "PickListStatus",
    "ProductVariant",
    "ReservationPolicy",
    "User",
]
