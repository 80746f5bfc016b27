# pickflow/api/routers/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickflow.api.deps import get_current_actor, get_session_factory
from pickflow.api.problem import raise_404
from pickflow.db.uow import UnitOfWork
from pickflow.models.enums import ReservationPolicy
from pickflow.models.order import Order
from pickflow.models.user import User
from pickflow.schemas.order import OrderStatusTrailOut, ReservationOut, StatusHistoryOut
from pickflow.services.allocation_claims import AllocationClaims
from pickflow.services.order_status_tracker import OrderStatusTracker
from pickflow.services.reservation_service import ReservationService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/{order_id}/reserve", response_model=ReservationOut)
async def reserve_order(
    order_id: str,
    policy: ReservationPolicy = Query(ReservationPolicy.THROW),
    actor: User = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ReservationOut:
    """
    单订单预占：
      - throw  ：任一行不足 → 409，整单不留任何预占
      - partial：能占多少占多少，缺口在 shortfalls 中返回
    与建拣货单共用订单级占用：同一订单正在分配中 → 409
    """
    async with UnitOfWork(session_factory) as uow:
        if await uow.session.get(Order, order_id) is None:
            raise_404("order_not_found", f"Order {order_id} not found")

    async with AllocationClaims(session_factory).hold([order_id], actor_id=actor.id):
        result = await ReservationService(session_factory).reserve(
            order_id, actor_id=actor.id, policy=policy
        )
    return ReservationOut.from_result(result)


@router.get("/{order_id}/status-history", response_model=OrderStatusTrailOut)
async def order_status_history(
    order_id: str,
    actor: User = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OrderStatusTrailOut:
    async with UnitOfWork(session_factory) as uow:
        order = await uow.session.get(Order, order_id)
        if order is None:
            raise_404("order_not_found", f"Order {order_id} not found")
        rows = await OrderStatusTracker().history(uow.session, order_id)

    return OrderStatusTrailOut(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        history=[StatusHistoryOut.model_validate(r) for r in rows],
    )
