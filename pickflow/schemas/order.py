# pickflow/schemas/order.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pickflow.models.enums import OrderStatus, ReservationPolicy
from pickflow.schemas.pick_list import ShortfallOut, _Base
from pickflow.services.reservation_service import ReservationResult


class ReservedLineOut(_Base):
    order_item_id: str
    product_variant_id: str
    inventory_id: int
    location_id: str
    quantity: int


class ReservationOut(_Base):
    order_id: str
    policy: ReservationPolicy
    success: bool
    order_status: OrderStatus
    reservations: List[ReservedLineOut] = []
    shortfalls: List[ShortfallOut] = []

    @classmethod
    def from_result(cls, r: ReservationResult) -> "ReservationOut":
        return cls(
            order_id=r.order_id,
            policy=r.policy,
            success=r.success,
            order_status=r.order_status,
            reservations=[ReservedLineOut.model_validate(x) for x in r.reservations],
            shortfalls=[ShortfallOut.from_shortfall(s) for s in r.shortfalls],
        )


class StatusHistoryOut(_Base):
    id: int
    previous_status: Optional[str] = None
    new_status: str
    changed_by: str
    changed_at: datetime
    notes: Optional[str] = None


class OrderStatusTrailOut(_Base):
    order_id: str
    order_number: str
    status: OrderStatus
    history: List[StatusHistoryOut]
