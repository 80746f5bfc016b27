# pickflow/services/reservation_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.core.config import get_settings
from pickflow.db.uow import SessionOrFactory, UnitOfWork
from pickflow.models.enums import InventoryTransactionType, OrderStatus, ReservationPolicy
from pickflow.models.inventory import InventoryRecord
from pickflow.models.inventory_reservation import InventoryReservation
from pickflow.models.inventory_transaction import InventoryTransaction
from pickflow.models.order import Order
from pickflow.obs.metrics import reservations_total
from pickflow.services.errors import (
    ConcurrentAllocationError,
    InsufficientInventoryError,
    InvalidOrderStateError,
    NothingToReserveError,
    OrderNotFoundError,
    Shortfall,
    StaleInventoryError,
)
from pickflow.services.inventory_ledger import InventoryLedger
from pickflow.services.order_status_tracker import OrderStatusTracker

log = logging.getLogger("pickflow.reservation")

RESERVABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.ALLOCATED)


@dataclass
class ReservedLine:
    order_item_id: str
    product_variant_id: str
    inventory_id: int
    location_id: str
    quantity: int


@dataclass
class ReservationResult:
    order_id: str
    policy: ReservationPolicy
    success: bool
    order_status: OrderStatus
    reservations: List[ReservedLine] = field(default_factory=list)
    shortfalls: List[Shortfall] = field(default_factory=list)
    attempts: int = 1


class ReservationService:
    """
    订单级库存预占（一单一事务）。

    - 先读后写：一次尝试内所有读取（订单 / 已占量 / 候选库位）都在第一条写之前完成
    - 写入全部走 InventoryLedger.reserve（CAS），冲突 → 整单回滚后重读重试
    - THROW：任一行不足即整单放弃；PARTIAL：能占多少占多少，缺口交给上游做欠货
    """

    def __init__(
        self,
        session_factory: SessionOrFactory,
        *,
        ledger: Optional[InventoryLedger] = None,
        tracker: Optional[OrderStatusTracker] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger or InventoryLedger()
        self.tracker = tracker or OrderStatusTracker()
        if max_retries is None:
            max_retries = get_settings().RESERVATION_MAX_RETRIES
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.max_retries = max_retries

    async def reserve(
        self,
        order_id: str,
        *,
        actor_id: str,
        policy: ReservationPolicy = ReservationPolicy.THROW,
    ) -> ReservationResult:
        policy = ReservationPolicy(policy)
        attempt = 0
        while True:
            attempt += 1
            try:
                async with UnitOfWork(self.session_factory) as uow:
                    result = await self._reserve_once(uow.session, order_id, actor_id, policy)
            except StaleInventoryError as e:
                if attempt >= self.max_retries:
                    reservations_total.labels(policy.value, "conflict").inc()
                    log.warning(
                        "reservation for order %s gave up after %d attempts (inventory %s)",
                        order_id,
                        attempt,
                        e.inventory_id,
                    )
                    raise ConcurrentAllocationError(
                        f"Inventory for order {order_id} kept changing concurrently; "
                        f"gave up after {attempt} attempts"
                    ) from e
                log.info("reservation for order %s retrying (attempt %d)", order_id, attempt + 1)
                continue
            except InsufficientInventoryError:
                reservations_total.labels(policy.value, "insufficient").inc()
                raise

            result.attempts = attempt
            outcome = "success" if not result.shortfalls else "partial"
            reservations_total.labels(policy.value, outcome).inc()
            return result

    async def _reserve_once(
        self,
        session: AsyncSession,
        order_id: str,
        actor_id: str,
        policy: ReservationPolicy,
    ) -> ReservationResult:
        order = (
            await session.execute(
                select(Order).where(Order.id == order_id).with_for_update(of=Order)
            )
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if order.status not in RESERVABLE_STATUSES:
            raise InvalidOrderStateError(
                f"Order {order.order_number} is {OrderStatus(order.status).value}; "
                "only PENDING or ALLOCATED orders can be reserved"
            )

        already = await self._reserved_by_item(session, order.id)
        remaining = {
            it.id: int(it.quantity) - already.get(it.id, 0)
            for it in order.items
            if int(it.quantity) - already.get(it.id, 0) > 0
        }
        if not remaining:
            raise NothingToReserveError(f"Order {order.order_number} is already fully reserved")

        # ---- 规划（只读） ----
        plan: List[Tuple[str, InventoryRecord, int]] = []
        shortfalls: List[Shortfall] = []
        drawn: Dict[int, int] = {}
        candidates: Dict[str, List[InventoryRecord]] = {}
        for item in order.items:
            need = remaining.get(item.id, 0)
            if need <= 0:
                continue
            vid = item.product_variant_id
            if vid not in candidates:
                candidates[vid] = await self.ledger.candidates_for_update(session, vid)

            left = need
            for rec in candidates[vid]:
                if left <= 0:
                    break
                avail = rec.quantity_available - drawn.get(rec.id, 0)
                if avail <= 0:
                    continue
                take = min(left, avail)
                plan.append((item.id, rec, take))
                drawn[rec.id] = drawn.get(rec.id, 0) + take
                left -= take

            if left > 0:
                sku = item.product_variant.sku if item.product_variant is not None else None
                shortfalls.append(
                    Shortfall(
                        order_id=order.id,
                        order_item_id=item.id,
                        product_variant_id=vid,
                        sku=sku,
                        requested=need,
                        covered=need - left,
                    )
                )

        if shortfalls and policy is ReservationPolicy.THROW:
            raise InsufficientInventoryError(order.id, shortfalls, order_number=order.order_number)

        if not plan:
            # PARTIAL 且一件都没占到：订单保持原状态
            log.info("order %s: nothing could be reserved (partial)", order.order_number)
            return ReservationResult(
                order_id=order.id,
                policy=policy,
                success=False,
                order_status=OrderStatus(order.status),
                shortfalls=shortfalls,
            )

        # ---- 写入 ----
        lines: List[ReservedLine] = []
        for order_item_id, rec, qty in plan:
            await self.ledger.reserve(session, rec, qty)
            session.add(
                InventoryReservation(
                    order_id=order.id,
                    order_item_id=order_item_id,
                    inventory_id=rec.id,
                    product_variant_id=rec.product_variant_id,
                    location_id=rec.location_id,
                    quantity=qty,
                    created_by=actor_id,
                )
            )
            session.add(
                InventoryTransaction(
                    product_variant_id=rec.product_variant_id,
                    location_id=rec.location_id,
                    transaction_type=InventoryTransactionType.ALLOCATION,
                    quantity_change=-qty,
                    reference_type="ORDER",
                    reference_id=order.id,
                    user_id=actor_id,
                    notes=f"Allocated for order {order.order_number}",
                )
            )
            lines.append(
                ReservedLine(
                    order_item_id=order_item_id,
                    product_variant_id=rec.product_variant_id,
                    inventory_id=int(rec.id),
                    location_id=rec.location_id,
                    quantity=qty,
                )
            )
        await session.flush()

        if order.status == OrderStatus.PENDING:
            if shortfalls:
                note = (
                    f"Partial allocation - {len(lines)} location(s) allocated, "
                    f"{len(shortfalls)} item(s) short"
                )
            else:
                note = f"Inventory allocated successfully - {len(lines)} location(s)"
            await self.tracker.transition(
                session, order, OrderStatus.ALLOCATED, actor_id=actor_id, notes=note
            )

        log.info(
            "order %s reserved %d unit(s) across %d location(s) policy=%s short=%d",
            order.order_number,
            sum(ln.quantity for ln in lines),
            len(lines),
            policy.value,
            len(shortfalls),
        )
        return ReservationResult(
            order_id=order.id,
            policy=policy,
            success=not shortfalls,
            order_status=OrderStatus(order.status),
            reservations=lines,
            shortfalls=shortfalls,
        )

    @staticmethod
    async def _reserved_by_item(session: AsyncSession, order_id: str) -> Dict[str, int]:
        rows = (
            await session.execute(
                select(
                    InventoryReservation.order_item_id,
                    func.coalesce(func.sum(InventoryReservation.quantity), 0),
                )
                .where(InventoryReservation.order_id == order_id)
                .group_by(InventoryReservation.order_item_id)
            )
        ).all()
        return {str(item_id): int(qty) for item_id, qty in rows}
