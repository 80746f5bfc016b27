# tests/services/test_allocation_orchestrator.py
from __future__ import annotations

from datetime import timedelta

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select

from pickflow.models import (
    Order,
    OrderAllocationClaim,
    OrderStatus,
    PickList,
    PickListItem,
    PickListStatus,
)
from pickflow.models._ids import new_id, utcnow
from pickflow.services.allocation_claims import AllocationClaims
from pickflow.services.allocation_orchestrator import AllocationOrchestrator
from pickflow.services.errors import (
    BatchAllocationError,
    BatchValidationError,
    InsufficientInventoryError,
    NoValidOrdersError,
    OrderAlreadyAllocatingError,
    WorkerNotFoundError,
)
from tests.factories import (
    add_inventory,
    inventory_by_location,
    make_order,
    order_status,
    reserved_total,
    status_trail,
)


async def _claims_left(session_factory) -> int:
    async with session_factory() as s:
        return (
            await s.execute(select(func.count()).select_from(OrderAllocationClaim))
        ).scalar_one()


@pytest.mark.asyncio
async def test_batch_reserves_lists_and_advances_orders(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    await add_inventory(session_factory, "v-widget", "loc-b", 20)
    await add_inventory(session_factory, "v-gadget", "loc-c", 5)
    o1 = await make_order(session_factory, "SO-1", [("v-widget", 25)])
    o2 = await make_order(session_factory, "SO-2", [("v-gadget", 2), ("v-widget", 3)])

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [o1.id, o2.id], assigned_to="u-picker", priority=2, actor_id="u-admin"
    )

    pl = result.pick_list
    assert pl.status == PickListStatus.ASSIGNED
    assert pl.assigned_to == "u-picker"
    assert pl.priority == 2
    assert result.shortfalls == []
    assert result.deferred_order_ids == []
    assert [r.order_id for r in result.reservations] == [o1.id, o2.id]

    items = sorted(pl.items, key=lambda i: i.pick_sequence)
    assert [i.pick_sequence for i in items] == list(range(1, len(items) + 1))
    assert pl.total_items == len(items)
    # SO-1：B 20 + A 5；SO-2：C 2 + A 3（A 剩 5 > 0，B 已拣空）
    assert [(i.order_id, i.location_id, i.quantity_to_pick) for i in items] == [
        (o1.id, "loc-b", 20),
        (o1.id, "loc-a", 5),
        (o2.id, "loc-c", 2),
        (o2.id, "loc-a", 3),
    ]

    for oid in (o1.id, o2.id):
        assert await order_status(session_factory, oid) == OrderStatus.PICKING
        trail = await status_trail(session_factory, oid)
        assert [(h.previous_status, h.new_status) for h in trail] == [
            ("PENDING", "ALLOCATED"),
            ("ALLOCATED", "PICKING"),
        ]
        assert trail[1].notes == f"Added to pick list {pl.batch_number}"

    assert await inventory_by_location(session_factory, "v-widget") == {
        "loc-a": (10, 8),
        "loc-b": (20, 20),
    }
    assert await _claims_left(session_factory) == 0


@pytest.mark.asyncio
async def test_ineligible_orders_are_excluded(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    ok = await make_order(session_factory, "SO-3", [("v-widget", 1)])
    shipped = await make_order(
        session_factory, "SO-4", [("v-widget", 1)], status=OrderStatus.SHIPPED
    )

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [ok.id, shipped.id, "does-not-exist"], assigned_to="u-picker", actor_id="u-admin"
    )

    assert {i.order_id for i in result.pick_list.items} == {ok.id}
    assert await order_status(session_factory, shipped.id) == OrderStatus.SHIPPED
    assert await status_trail(session_factory, shipped.id) == []


@pytest.mark.asyncio
async def test_no_valid_orders(session_factory, seed):
    picking = await make_order(
        session_factory, "SO-5", [("v-widget", 1)], status=OrderStatus.PICKING
    )
    with pytest.raises(NoValidOrdersError):
        await AllocationOrchestrator(session_factory).create_pick_batch(
            [picking.id], assigned_to="u-picker", actor_id="u-admin"
        )
    with pytest.raises(BatchValidationError):
        await AllocationOrchestrator(session_factory).create_pick_batch(
            [], assigned_to="u-picker", actor_id="u-admin"
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("worker", ["u-gone", "u-missing"])
async def test_unknown_or_inactive_worker(session_factory, seed, worker):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-6", [("v-widget", 1)])

    with pytest.raises(WorkerNotFoundError):
        await AllocationOrchestrator(session_factory).create_pick_batch(
            [order.id], assigned_to=worker, actor_id="u-admin"
        )
    assert await reserved_total(session_factory, order.id) == 0
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_failure_keeps_earlier_reservations_and_resubmit_is_safe(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 5)
    first = await make_order(session_factory, "SO-7", [("v-widget", 4)])
    second = await make_order(session_factory, "SO-8", [("v-widget", 4)])
    orch = AllocationOrchestrator(session_factory)

    with pytest.raises(BatchAllocationError) as ei:
        await orch.create_pick_batch(
            [first.id, second.id], assigned_to="u-picker", actor_id="u-admin"
        )

    err = ei.value
    assert err.order_id == second.id
    assert isinstance(err.cause, InsufficientInventoryError)
    assert err.committed_order_ids == [first.id]

    # 前一单的预占不回滚
    assert await order_status(session_factory, first.id) == OrderStatus.ALLOCATED
    assert await reserved_total(session_factory, first.id) == 4
    assert await order_status(session_factory, second.id) == OrderStatus.PENDING
    async with session_factory() as s:
        assert (await s.execute(select(func.count()).select_from(PickList))).scalar_one() == 0
    assert await _claims_left(session_factory) == 0

    # 补货后重提：已 ALLOCATED 的单不再重复预占
    await add_inventory(session_factory, "v-widget", "loc-b", 10)
    result = await orch.create_pick_batch(
        [first.id, second.id], assigned_to="u-picker", actor_id="u-admin"
    )

    assert [r.order_id for r in result.reservations] == [second.id]
    assert await reserved_total(session_factory, first.id) == 4
    assert await reserved_total(session_factory, second.id) == 4
    on_hand_reserved = await inventory_by_location(session_factory, "v-widget")
    assert sum(r for _, r in on_hand_reserved.values()) == 8
    for oid in (first.id, second.id):
        assert await order_status(session_factory, oid) == OrderStatus.PICKING


@pytest.mark.asyncio
async def test_claimed_order_is_rejected(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-9", [("v-widget", 1)])

    async with session_factory() as s:
        s.add(
            OrderAllocationClaim(
                order_id=order.id, claim_token=new_id(), claimed_by="u-admin", claimed_at=utcnow()
            )
        )
        await s.commit()

    with pytest.raises(OrderAlreadyAllocatingError) as ei:
        await AllocationOrchestrator(session_factory).create_pick_batch(
            [order.id], assigned_to="u-picker", actor_id="u-admin"
        )
    assert ei.value.order_ids == [order.id]
    assert await reserved_total(session_factory, order.id) == 0
    # 别人的占用不被误删
    assert await _claims_left(session_factory) == 1


@pytest.mark.asyncio
async def test_stale_claim_is_taken_over(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-10", [("v-widget", 1)])

    async with session_factory() as s:
        s.add(
            OrderAllocationClaim(
                order_id=order.id,
                claim_token=new_id(),
                claimed_by="u-admin",
                claimed_at=utcnow() - timedelta(hours=2),
            )
        )
        await s.commit()

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [order.id], assigned_to="u-picker", actor_id="u-admin"
    )

    assert result.pick_list.total_items == 1
    assert await _claims_left(session_factory) == 0


@pytest.mark.asyncio
async def test_order_without_placeable_items_is_deferred(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    widget = await make_order(session_factory, "SO-11", [("v-widget", 2)])
    # 已预占过、但 gadget 在库已清零：排不出拣货行
    gadget = await make_order(
        session_factory, "SO-12", [("v-gadget", 1)], status=OrderStatus.ALLOCATED
    )

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [widget.id, gadget.id], assigned_to="u-picker", actor_id="u-admin"
    )

    assert [i.order_id for i in result.pick_list.items] == [widget.id]
    assert result.deferred_order_ids == [gadget.id]
    assert [(s.order_id, s.requested, s.covered) for s in result.shortfalls] == [(gadget.id, 1, 0)]
    assert await order_status(session_factory, widget.id) == OrderStatus.PICKING
    assert await order_status(session_factory, gadget.id) == OrderStatus.ALLOCATED
    assert await status_trail(session_factory, gadget.id) == []


@pytest.mark.asyncio
async def test_lines_already_on_a_pick_list_are_not_listed_twice(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-13", [("v-widget", 3)])
    other = await make_order(session_factory, "SO-14", [("v-widget", 1)])
    orch = AllocationOrchestrator(session_factory)

    await orch.create_pick_batch([order.id], assigned_to="u-picker", actor_id="u-admin")

    # 把 SO-13 拉回 ALLOCATED 模拟重排，已在拣货单上的数量不再出行
    async with session_factory() as s:
        o = await s.get(Order, order.id)
        o.status = OrderStatus.ALLOCATED
        await s.commit()

    result = await orch.create_pick_batch(
        [order.id, other.id], assigned_to="u-picker", actor_id="u-admin"
    )

    assert [i.order_id for i in result.pick_list.items] == [other.id]
    assert result.deferred_order_ids == [order.id]
    async with session_factory() as s:
        total = (
            await s.execute(
                select(func.sum(PickListItem.quantity_to_pick)).where(
                    PickListItem.order_id == order.id
                )
            )
        ).scalar_one()
    assert total == 3


@pytest.mark.asyncio
async def test_stock_held_by_other_orders_is_not_planned(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    # B 在库更多，但已被批次外的订单全部占住
    await add_inventory(session_factory, "v-widget", "loc-b", 20, reserved=20)
    order = await make_order(session_factory, "SO-15", [("v-widget", 5)])

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [order.id], assigned_to="u-picker", actor_id="u-admin"
    )

    items = result.pick_list.items
    assert [(i.location_id, i.quantity_to_pick) for i in items] == [("loc-a", 5)]
    assert result.shortfalls == []
    assert await inventory_by_location(session_factory, "v-widget") == {
        "loc-a": (10, 5),
        "loc-b": (20, 20),
    }


@pytest.mark.asyncio
async def test_partial_shortfall_still_creates_pick_list(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 12)
    order = await make_order(
        session_factory, "SO-16", [("v-widget", 20)], status=OrderStatus.ALLOCATED
    )
    before = REGISTRY.get_sample_value("pick_shortfall_units_total") or 0

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        [order.id], assigned_to="u-picker", actor_id="u-admin"
    )

    items = result.pick_list.items
    assert [(i.location_id, i.quantity_to_pick) for i in items] == [("loc-a", 12)]
    assert result.pick_list.total_items == 1
    assert [(s.requested, s.covered, s.short) for s in result.shortfalls] == [(20, 12, 8)]
    assert result.deferred_order_ids == []
    assert await order_status(session_factory, order.id) == OrderStatus.PICKING
    after = REGISTRY.get_sample_value("pick_shortfall_units_total") or 0
    assert after - before == 8


@pytest.mark.asyncio
async def test_claim_ttl_argument_is_honoured(session_factory, seed):
    order = await make_order(session_factory, "SO-17", [("v-widget", 1)])
    async with session_factory() as s:
        s.add(
            OrderAllocationClaim(
                order_id=order.id,
                claim_token=new_id(),
                claimed_by="u-admin",
                claimed_at=utcnow() - timedelta(seconds=30),
            )
        )
        await s.commit()

    # 30 秒前的占用：默认 TTL 下仍有效，TTL=10 时视为遗留
    with pytest.raises(OrderAlreadyAllocatingError):
        await AllocationClaims(session_factory).claim([order.id], actor_id="u-admin")

    claims = AllocationClaims(session_factory, ttl_seconds=10)
    assert claims.ttl_seconds == 10
    async with claims.hold([order.id], actor_id="u-admin"):
        assert await _claims_left(session_factory) == 1
    assert await _claims_left(session_factory) == 0

    with pytest.raises(ValueError):
        AllocationClaims(session_factory, ttl_seconds=0)
