# pickflow/services/allocation_orchestrator.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.db.uow import SessionOrFactory, UnitOfWork
from pickflow.models.enums import OrderStatus, PickListStatus, ReservationPolicy
from pickflow.models.order import Order
from pickflow.models.pick_list import PickList
from pickflow.models.pick_list_item import PickListItem
from pickflow.models.user import User
from pickflow.obs.metrics import (
    allocation_failures_total,
    pick_batch_duration,
    pick_shortfall_units_total,
)
from pickflow.services.allocation_claims import AllocationClaims
from pickflow.services.errors import (
    AllocationError,
    BatchAllocationError,
    BatchValidationError,
    EmptyPickPlanError,
    NoValidOrdersError,
    Shortfall,
    WorkerNotFoundError,
)
from pickflow.services.inventory_ledger import InventoryLedger
from pickflow.services.order_status_tracker import OrderStatusTracker
from pickflow.services.pick_list_generator import OrderDemand, OrderLineDemand, generate
from pickflow.services.pick_list_writer import PickListHeader, PickListWriter
from pickflow.services.reservation_service import (
    RESERVABLE_STATUSES,
    ReservationResult,
    ReservationService,
)

log = logging.getLogger("pickflow.allocation")


@dataclass
class PickBatchResult:
    pick_list: PickList
    shortfalls: List[Shortfall] = field(default_factory=list)
    deferred_order_ids: List[str] = field(default_factory=list)
    reservations: List[ReservationResult] = field(default_factory=list)


class AllocationOrchestrator:
    """
    批量订单 → 一张拣货单：

      1) 校验（订单列表 / 拣货员）
      2) 只保留 PENDING / ALLOCATED 订单，其余静默剔除
      3) 订单级占用（互斥），结束时一定释放
      4) 逐单预占（THROW）：某单失败 → 整个请求失败，但之前已提交的预占保留
      5) 生成拣货规划 → 6) 事务写入 → 7) 有拣货行的订单推进到 PICKING

    通知由调用方在响应之后调度（见 NotificationDispatcher）。
    """

    def __init__(
        self,
        session_factory: SessionOrFactory,
        *,
        reservation: Optional[ReservationService] = None,
        writer: Optional[PickListWriter] = None,
        tracker: Optional[OrderStatusTracker] = None,
        ledger: Optional[InventoryLedger] = None,
        claims: Optional[AllocationClaims] = None,
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger or InventoryLedger()
        self.tracker = tracker or OrderStatusTracker()
        self.reservation = reservation or ReservationService(
            session_factory, ledger=self.ledger, tracker=self.tracker
        )
        self.writer = writer or PickListWriter(session_factory)
        self.claims = claims or AllocationClaims(session_factory)

    async def create_pick_batch(
        self,
        order_ids: Sequence[str],
        *,
        assigned_to: str,
        priority: int = 0,
        actor_id: str,
    ) -> PickBatchResult:
        started = time.perf_counter()
        try:
            return await self._create_pick_batch(
                order_ids, assigned_to=assigned_to, priority=priority, actor_id=actor_id
            )
        except AllocationError as e:
            allocation_failures_total.labels(e.error_code).inc()
            raise
        finally:
            pick_batch_duration.observe(time.perf_counter() - started)

    async def _create_pick_batch(
        self,
        order_ids: Sequence[str],
        *,
        assigned_to: str,
        priority: int,
        actor_id: str,
    ) -> PickBatchResult:
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            raise BatchValidationError("orderIds must contain at least one order id")

        async with UnitOfWork(self.session_factory) as uow:
            worker = await uow.session.get(User, assigned_to)
            if worker is None or not worker.is_active:
                raise WorkerNotFoundError(f"Assigned user {assigned_to} not found or inactive")
            candidates = await self._eligible_order_ids(uow.session, ids)

        if not candidates:
            raise NoValidOrdersError()

        async with self.claims.hold(candidates, actor_id=actor_id):
            # 占用之后重读：排队期间别的请求可能已经改了状态
            async with UnitOfWork(self.session_factory) as uow:
                orders = await self._load_orders(uow.session, candidates)
            if not orders:
                raise NoValidOrdersError()

            reservations: List[ReservationResult] = []
            committed: List[str] = []
            for order in orders:
                if order.status != OrderStatus.PENDING:
                    continue
                try:
                    res = await self.reservation.reserve(
                        order.id, actor_id=actor_id, policy=ReservationPolicy.THROW
                    )
                except AllocationError as e:
                    log.warning(
                        "batch allocation failed at order %s (%s); %d earlier order(s) keep their reservations",
                        order.order_number,
                        e.error_code,
                        len(committed),
                    )
                    raise BatchAllocationError(order.id, e, committed) from e
                reservations.append(res)
                committed.append(order.id)

            async with UnitOfWork(self.session_factory) as uow:
                session = uow.session
                demands = await self._build_demands(session, [o.id for o in orders])
                variant_ids = {ln.product_variant_id for d in demands for ln in d.lines}
                stock = await self.ledger.snapshot_for_variants(
                    session, variant_ids, own_order_ids=[o.id for o in orders]
                )

            plan = generate(demands, stock)
            if plan.shortfall_units:
                pick_shortfall_units_total.inc(plan.shortfall_units)
            if not plan.items:
                raise EmptyPickPlanError(
                    "No pick list items could be generated for the selected orders"
                )

            picked_order_ids = plan.order_ids_with_items
            pick_list = await self.writer.commit(
                PickListHeader(
                    assigned_to=assigned_to,
                    priority=priority,
                    order_count=len(picked_order_ids),
                ),
                plan.items,
                actor_id=actor_id,
            )

            await self.tracker.advance_to_picking(
                self.session_factory, picked_order_ids, pick_list, actor_id=actor_id
            )

        deferred = [o.id for o in orders if o.id not in set(picked_order_ids)]
        if deferred:
            log.info(
                "pick list %s: %d order(s) deferred with no placeable items",
                pick_list.batch_number,
                len(deferred),
            )
        return PickBatchResult(
            pick_list=pick_list,
            shortfalls=plan.shortfalls,
            deferred_order_ids=deferred,
            reservations=reservations,
        )

    @staticmethod
    async def _eligible_order_ids(session: AsyncSession, ids: List[str]) -> List[str]:
        found = set(
            (
                await session.execute(
                    select(Order.id).where(Order.id.in_(ids), Order.status.in_(RESERVABLE_STATUSES))
                )
            ).scalars()
        )
        return [i for i in ids if i in found]

    @staticmethod
    async def _load_orders(session: AsyncSession, ids: List[str]) -> List[Order]:
        rows = (
            await session.execute(
                select(Order)
                .where(Order.id.in_(ids), Order.status.in_(RESERVABLE_STATUSES))
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        by_id = {o.id: o for o in rows}
        return [by_id[i] for i in ids if i in by_id]

    async def _build_demands(self, session: AsyncSession, ids: List[str]) -> List[OrderDemand]:
        orders = await self._load_orders(session, ids)
        listed = await self._already_listed(session, ids)
        return [
            OrderDemand(
                order_id=o.id,
                order_number=o.order_number,
                lines=tuple(
                    OrderLineDemand(
                        order_item_id=it.id,
                        product_variant_id=it.product_variant_id,
                        sku=it.product_variant.sku,
                        quantity=int(it.quantity),
                        already_listed=listed.get(it.id, 0),
                    )
                    for it in o.items
                ),
            )
            for o in orders
        ]

    @staticmethod
    async def _already_listed(session: AsyncSession, order_ids: List[str]) -> Dict[str, int]:
        """订单行已经落在其他（未取消）拣货单上的数量"""
        rows = (
            await session.execute(
                select(PickListItem.order_item_id, func.sum(PickListItem.quantity_to_pick))
                .join(PickList, PickList.id == PickListItem.pick_list_id)
                .where(
                    PickListItem.order_id.in_(order_ids),
                    PickList.status != PickListStatus.CANCELLED,
                )
                .group_by(PickListItem.order_item_id)
            )
        ).all()
        return {str(item_id): int(qty or 0) for item_id, qty in rows}
