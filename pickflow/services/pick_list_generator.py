# pickflow/services/pick_list_generator.py
"""
拣货规划（纯函数，无 IO）：订单需求 + 库位库存快照 → 拣货行草稿 + 缺口。

规则：
  - 每行待排数量 = 下单数量 − 已在其他拣货单上的数量（already_listed）
  - 可拣量 = 在库量 − 本批次以外订单的预占（LocationStock.quantity_pickable）
  - 按“剩余可拣量”降序切分到多个库位（同量按 location_id），
    同一批次内前面的行已消耗的量要先扣掉，不会把一个库位排超
  - pick_sequence 全批统一从 1 开始连续编号：订单按请求顺序，行按订单行顺序
  - 缺货不报错：能排多少排多少，缺口记入 shortfalls 并打 WARNING
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

from pickflow.services.errors import Shortfall
from pickflow.services.inventory_ledger import LocationStock

log = logging.getLogger("pickflow.generator")


@dataclass(frozen=True)
class OrderLineDemand:
    order_item_id: str
    product_variant_id: str
    sku: str
    quantity: int
    already_listed: int = 0

    @property
    def open_quantity(self) -> int:
        return max(0, self.quantity - self.already_listed)


@dataclass(frozen=True)
class OrderDemand:
    order_id: str
    order_number: str
    lines: Sequence[OrderLineDemand]


@dataclass
class PickListItemDraft:
    order_id: str
    order_item_id: str
    product_variant_id: str
    location_id: str
    location_name: str
    quantity_to_pick: int
    pick_sequence: int


@dataclass
class PickPlan:
    items: List[PickListItemDraft] = field(default_factory=list)
    shortfalls: List[Shortfall] = field(default_factory=list)

    @property
    def order_ids_with_items(self) -> List[str]:
        seen: Dict[str, None] = {}
        for it in self.items:
            seen.setdefault(it.order_id, None)
        return list(seen)

    @property
    def shortfall_units(self) -> int:
        return sum(s.short for s in self.shortfalls)


def generate(
    orders: Sequence[OrderDemand],
    stock: Mapping[str, Sequence[LocationStock]],
) -> PickPlan:
    plan = PickPlan()
    consumed: Dict[int, int] = {}
    seq = 0

    def remaining(s: LocationStock) -> int:
        return s.quantity_pickable - consumed.get(s.inventory_id, 0)

    for order in orders:
        for line in order.lines:
            need = line.open_quantity
            if need <= 0:
                continue

            locations = [s for s in stock.get(line.product_variant_id, ()) if remaining(s) > 0]
            locations.sort(key=lambda s: (-remaining(s), s.location_id))

            left = need
            for loc in locations:
                if left <= 0:
                    break
                take = min(left, remaining(loc))
                seq += 1
                plan.items.append(
                    PickListItemDraft(
                        order_id=order.order_id,
                        order_item_id=line.order_item_id,
                        product_variant_id=line.product_variant_id,
                        location_id=loc.location_id,
                        location_name=loc.location_name,
                        quantity_to_pick=take,
                        pick_sequence=seq,
                    )
                )
                consumed[loc.inventory_id] = consumed.get(loc.inventory_id, 0) + take
                left -= take

            if left > 0:
                log.warning(
                    "Insufficient inventory for order %s sku %s: needed %d, placed %d",
                    order.order_number,
                    line.sku,
                    need,
                    need - left,
                )
                plan.shortfalls.append(
                    Shortfall(
                        order_id=order.order_id,
                        order_item_id=line.order_item_id,
                        product_variant_id=line.product_variant_id,
                        sku=line.sku,
                        requested=need,
                        covered=need - left,
                    )
                )

    return plan
