# pickflow/services/order_status_tracker.py
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.db.uow import SessionOrFactory, UnitOfWork
from pickflow.models._ids import utcnow
from pickflow.models.enums import OrderStatus
from pickflow.models.order import Order
from pickflow.models.order_status_history import OrderStatusHistory
from pickflow.models.pick_list import PickList
from pickflow.models.pick_list_item import PickListItem
from pickflow.services.errors import (
    InvalidTransitionError,
    OrderNotFoundError,
    TransitionPreconditionError,
)

log = logging.getLogger("pickflow.orders")

# 允许的状态迁移（其余一律拒绝）
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ALLOCATED, OrderStatus.CANCELLED}),
    OrderStatus.ALLOCATED: frozenset({OrderStatus.PICKING, OrderStatus.CANCELLED}),
    OrderStatus.PICKING: frozenset({OrderStatus.PICKED}),
    OrderStatus.PICKED: frozenset({OrderStatus.PACKED}),
    OrderStatus.PACKED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(OrderStatus(current), frozenset())


class OrderStatusTracker:
    """
    订单状态机 + 状态轨迹。

    每一次状态变更都恰好写一条 order_status_history（actor / 时间非空），
    历史行只追加，本类不提供任何修改 / 删除历史的入口。
    """

    async def transition(
        self,
        session: AsyncSession,
        order: Order,
        new_status: OrderStatus,
        *,
        actor_id: str,
        notes: Optional[str] = None,
    ) -> OrderStatusHistory:
        current = OrderStatus(order.status)
        target = OrderStatus(new_status)
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot transition order {order.order_number} from {current.value} to {target.value}"
            )

        if target is OrderStatus.PICKING:
            await self._require_pick_list_item(session, order)

        now = utcnow()
        order.status = target
        order.updated_at = now
        row = OrderStatusHistory(
            order_id=order.id,
            previous_status=current.value,
            new_status=target.value,
            changed_by=actor_id,
            changed_at=now,
            notes=notes,
        )
        session.add(row)
        await session.flush()

        log.info(
            "order %s status %s -> %s by=%s", order.order_number, current.value, target.value, actor_id
        )
        return row

    async def advance_to_picking(
        self,
        session_factory: SessionOrFactory,
        order_ids: Sequence[str],
        pick_list: PickList,
        *,
        actor_id: str,
    ) -> List[str]:
        """
        把已落到拣货单上的订单推进到 PICKING（独立事务）。

        返回实际推进的订单 id（保持入参顺序）。
        """
        if not order_ids:
            return []

        advanced: List[str] = []
        async with UnitOfWork(session_factory) as uow:
            session = uow.session
            rows = (
                await session.execute(
                    select(Order).where(Order.id.in_(list(order_ids))).with_for_update(of=Order)
                )
            ).scalars().all()
            by_id = {o.id: o for o in rows}

            now = utcnow()
            note = f"Added to pick list {pick_list.batch_number}"
            for oid in order_ids:
                order = by_id.get(oid)
                if order is None:
                    raise OrderNotFoundError(f"Order {oid} not found")
                order.picking_assigned_to = pick_list.assigned_to
                order.picking_assigned_at = now
                await self.transition(
                    session, order, OrderStatus.PICKING, actor_id=actor_id, notes=note
                )
                advanced.append(oid)
        return advanced

    async def history(self, session: AsyncSession, order_id: str) -> List[OrderStatusHistory]:
        stmt = (
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.id.asc())
        )
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def _require_pick_list_item(session: AsyncSession, order: Order) -> None:
        hit = (
            await session.execute(
                select(PickListItem.id).where(PickListItem.order_id == order.id).limit(1)
            )
        ).first()
        if hit is None:
            raise TransitionPreconditionError(
                f"Order {order.order_number} has no pick list item; cannot move to PICKING"
            )
