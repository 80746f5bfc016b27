# pickflow/schemas/pick_list.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pickflow.models.enums import PickListItemStatus, PickListStatus
from pickflow.models.pick_list import PickList
from pickflow.services.errors import Shortfall
from pickflow.services.pick_list_query import PickListSummary


# ===== 统一基类：对外 camelCase / 允许 ORM / 兼容字段名填充 =====
class _Base(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ===== 入参 =====
class CreatePickListIn(_Base):
    """
    POST /pick-lists 入参
    """

    model_config = ConfigDict(extra="forbid")

    order_ids: Annotated[List[str], Field(min_length=1)]
    assigned_to: Annotated[str, Field(min_length=1)]
    priority: int = 0

    @field_validator("order_ids")
    @classmethod
    def _non_blank_ids(cls, v: List[str]) -> List[str]:
        ids = [s.strip() for s in v]
        if any(not s for s in ids):
            raise ValueError("orderIds must not contain blank ids")
        return ids

    @field_validator("assigned_to")
    @classmethod
    def _trim_assignee(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("assignedTo is required")
        return v


# ===== 出参：嵌套摘要 =====
class UserRef(_Base):
    id: str
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None


class OrderRef(_Base):
    id: str
    order_number: str
    customer_name: Optional[str] = None


class ProductRef(_Base):
    id: str
    sku: str
    name: str


class LocationRef(_Base):
    id: str
    name: str
    zone: Optional[str] = None


class PickListItemOut(_Base):
    id: str
    pick_sequence: int
    order_id: str
    order_item_id: str
    quantity_to_pick: int
    quantity_picked: int
    status: PickListItemStatus
    order: Optional[OrderRef] = None
    product: Optional[ProductRef] = Field(default=None, validation_alias="product_variant")
    location: Optional[LocationRef] = None


class OrderSummaryOut(_Base):
    order_id: str
    order_number: str
    customer_name: Optional[str] = None
    item_count: int
    total_quantity: int


class ShortfallOut(_Base):
    order_id: str
    order_item_id: str
    product_variant_id: str
    sku: Optional[str] = None
    requested: int
    covered: int
    short: int

    @classmethod
    def from_shortfall(cls, s: Shortfall) -> "ShortfallOut":
        return cls(
            order_id=s.order_id,
            order_item_id=s.order_item_id,
            product_variant_id=s.product_variant_id,
            sku=s.sku,
            requested=s.requested,
            covered=s.covered,
            short=s.short,
        )


class PickListOut(_Base):
    id: str
    batch_number: str
    status: PickListStatus
    priority: int
    assigned_to: Optional[str] = None
    assigned_user: Optional[UserRef] = None
    total_items: int
    picked_items: int
    created_by: Optional[str] = None
    created_at: datetime
    items: List[PickListItemOut] = []
    orders: List[OrderSummaryOut] = []

    @classmethod
    def from_model(cls, pl: PickList) -> "PickListOut":
        out = cls.model_validate(pl)
        out.orders = summarize_orders(pl)
        return out


class PickBatchOut(PickListOut):
    shortfalls: List[ShortfallOut] = []
    deferred_order_ids: List[str] = []


def summarize_orders(pl: PickList) -> List[OrderSummaryOut]:
    acc: Dict[str, OrderSummaryOut] = {}
    for it in pl.items:
        row = acc.get(it.order_id)
        if row is None:
            row = OrderSummaryOut(
                order_id=it.order_id,
                order_number=it.order.order_number if it.order is not None else "",
                customer_name=it.order.customer_name if it.order is not None else None,
                item_count=0,
                total_quantity=0,
            )
            acc[it.order_id] = row
        row.item_count += 1
        row.total_quantity += int(it.quantity_to_pick)
    return list(acc.values())


# ===== 列表 =====
class PickListSummaryOut(_Base):
    id: str
    batch_number: str
    status: PickListStatus
    priority: int
    assigned_to: Optional[str] = None
    assigned_user: Optional[UserRef] = None
    total_items: int
    picked_items: int
    completion_rate: int
    items_remaining: int
    created_at: datetime

    @classmethod
    def from_summary(cls, s: PickListSummary) -> "PickListSummaryOut":
        pl = s.pick_list
        return cls(
            id=pl.id,
            batch_number=pl.batch_number,
            status=pl.status,
            priority=pl.priority,
            assigned_to=pl.assigned_to,
            assigned_user=UserRef.model_validate(pl.assigned_user) if pl.assigned_user else None,
            total_items=s.total_quantity,
            picked_items=s.picked_quantity,
            completion_rate=s.completion_rate,
            items_remaining=s.items_remaining,
            created_at=pl.created_at,
        )


class PickListPageOut(_Base):
    pick_lists: List[PickListSummaryOut]
    total_pages: int
    current_page: int
    total_count: int
