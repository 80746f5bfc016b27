# tests/services/test_reservation_service.py
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select, update

from pickflow.core.config import get_settings
from pickflow.models import (
    InventoryRecord,
    InventoryReservation,
    InventoryTransaction,
    InventoryTransactionType,
    OrderStatus,
    ReservationPolicy,
)
from pickflow.services.errors import (
    ConcurrentAllocationError,
    InsufficientInventoryError,
    InvalidOrderStateError,
    NothingToReserveError,
    OrderNotFoundError,
    StaleInventoryError,
)
from pickflow.services.inventory_ledger import InventoryLedger
from pickflow.services.reservation_service import ReservationService
from tests.factories import (
    add_inventory,
    inventory_by_location,
    make_order,
    order_status,
    requires_pg,
    reserved_total,
    sqlite_only,
    status_trail,
)


@pytest.mark.asyncio
async def test_throw_reserves_across_locations_and_allocates(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    await add_inventory(session_factory, "v-widget", "loc-b", 20)
    order = await make_order(session_factory, "SO-100", [("v-widget", 25)])

    result = await ReservationService(session_factory).reserve(order.id, actor_id="u-admin")

    assert result.success is True
    assert result.order_status == OrderStatus.ALLOCATED
    assert [(r.location_id, r.quantity) for r in result.reservations] == [
        ("loc-b", 20),
        ("loc-a", 5),
    ]
    assert await inventory_by_location(session_factory, "v-widget") == {
        "loc-a": (10, 5),
        "loc-b": (20, 20),
    }

    async with session_factory() as s:
        txs = (
            await s.execute(
                select(InventoryTransaction).where(InventoryTransaction.reference_id == order.id)
            )
        ).scalars().all()
    assert sorted(t.quantity_change for t in txs) == [-20, -5]
    assert {t.transaction_type for t in txs} == {InventoryTransactionType.ALLOCATION}

    trail = await status_trail(session_factory, order.id)
    assert [(h.previous_status, h.new_status, h.changed_by) for h in trail] == [
        ("PENDING", "ALLOCATED", "u-admin")
    ]
    assert trail[0].notes == "Inventory allocated successfully - 2 location(s)"


@pytest.mark.asyncio
async def test_draw_is_bounded_by_available_not_on_hand(session_factory, seed):
    # loc-b 在库最多，但只剩 2 可用
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    await add_inventory(session_factory, "v-widget", "loc-b", 20, reserved=18)
    order = await make_order(session_factory, "SO-101", [("v-widget", 8)])

    result = await ReservationService(session_factory).reserve(order.id, actor_id="u-admin")

    assert [(r.location_id, r.quantity) for r in result.reservations] == [
        ("loc-b", 2),
        ("loc-a", 6),
    ]
    for on_hand, reserved in (await inventory_by_location(session_factory, "v-widget")).values():
        assert 0 <= reserved <= on_hand


@pytest.mark.asyncio
async def test_throw_insufficient_leaves_nothing_behind(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    await add_inventory(session_factory, "v-gadget", "loc-a", 1)
    order = await make_order(session_factory, "SO-102", [("v-widget", 4), ("v-gadget", 3)])

    with pytest.raises(InsufficientInventoryError) as ei:
        await ReservationService(session_factory).reserve(order.id, actor_id="u-admin")

    err = ei.value
    assert err.order_id == order.id
    assert [(s.sku, s.requested, s.covered, s.short) for s in err.shortfalls] == [
        ("SKU-GADGET", 3, 1, 2)
    ]
    assert await inventory_by_location(session_factory, "v-widget") == {"loc-a": (10, 0)}
    assert await inventory_by_location(session_factory, "v-gadget") == {"loc-a": (1, 0)}
    assert await reserved_total(session_factory, order.id) == 0
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING
    assert await status_trail(session_factory, order.id) == []


@pytest.mark.asyncio
async def test_partial_commits_what_it_can(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    await add_inventory(session_factory, "v-gadget", "loc-a", 1)
    order = await make_order(session_factory, "SO-103", [("v-widget", 4), ("v-gadget", 3)])

    result = await ReservationService(session_factory).reserve(
        order.id, actor_id="u-admin", policy=ReservationPolicy.PARTIAL
    )

    assert result.success is False
    assert result.order_status == OrderStatus.ALLOCATED
    assert sum(r.quantity for r in result.reservations) == 5
    assert [(s.product_variant_id, s.short) for s in result.shortfalls] == [("v-gadget", 2)]
    assert await reserved_total(session_factory, order.id) == 5

    trail = await status_trail(session_factory, order.id)
    assert trail[0].notes == "Partial allocation - 2 location(s) allocated, 1 item(s) short"


@pytest.mark.asyncio
async def test_partial_with_no_stock_keeps_order_pending(session_factory, seed):
    order = await make_order(session_factory, "SO-104", [("v-widget", 4)])

    result = await ReservationService(session_factory).reserve(
        order.id, actor_id="u-admin", policy="partial"
    )

    assert result.reservations == []
    assert result.order_status == OrderStatus.PENDING
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_allocated_order_is_topped_up_without_new_transition(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 3)
    order = await make_order(session_factory, "SO-105", [("v-widget", 5)])
    svc = ReservationService(session_factory)

    await svc.reserve(order.id, actor_id="u-admin", policy=ReservationPolicy.PARTIAL)

    async with session_factory() as s:
        await s.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_variant_id == "v-widget")
            .values(quantity_on_hand=10)
        )
        await s.commit()

    result = await svc.reserve(order.id, actor_id="u-admin")

    assert result.success is True
    assert sum(r.quantity for r in result.reservations) == 2
    assert await reserved_total(session_factory, order.id) == 5
    assert len(await status_trail(session_factory, order.id)) == 1

    with pytest.raises(NothingToReserveError):
        await svc.reserve(order.id, actor_id="u-admin")


@pytest.mark.asyncio
async def test_missing_order_and_wrong_state(session_factory, seed):
    svc = ReservationService(session_factory)
    with pytest.raises(OrderNotFoundError):
        await svc.reserve("nope", actor_id="u-admin")

    shipped = await make_order(
        session_factory, "SO-106", [("v-widget", 1)], status=OrderStatus.SHIPPED
    )
    with pytest.raises(InvalidOrderStateError):
        await svc.reserve(shipped.id, actor_id="u-admin")


@pytest.mark.asyncio
async def test_stale_write_retries_with_fresh_reads(session_factory, seed, monkeypatch):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-107", [("v-widget", 4)])

    ledger = InventoryLedger()
    real_reserve = ledger.reserve
    calls = {"n": 0}

    async def flaky_reserve(session, record, qty):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StaleInventoryError(int(record.id))
        await real_reserve(session, record, qty)

    monkeypatch.setattr(ledger, "reserve", flaky_reserve)

    result = await ReservationService(session_factory, ledger=ledger).reserve(
        order.id, actor_id="u-admin"
    )

    assert result.attempts == 2
    assert await inventory_by_location(session_factory, "v-widget") == {"loc-a": (10, 4)}
    assert await reserved_total(session_factory, order.id) == 4
    assert len(await status_trail(session_factory, order.id)) == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(session_factory, seed, monkeypatch):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-108", [("v-widget", 4)])

    ledger = InventoryLedger()

    async def always_stale(session, record, qty):
        raise StaleInventoryError(int(record.id))

    monkeypatch.setattr(ledger, "reserve", always_stale)

    with pytest.raises(ConcurrentAllocationError):
        await ReservationService(session_factory, ledger=ledger, max_retries=3).reserve(
            order.id, actor_id="u-admin"
        )

    assert await inventory_by_location(session_factory, "v-widget") == {"loc-a": (10, 0)}
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_explicit_max_retries_is_honoured(session_factory, seed, monkeypatch):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-109", [("v-widget", 4)])

    ledger = InventoryLedger()
    calls = {"n": 0}

    async def always_stale(session, record, qty):
        calls["n"] += 1
        raise StaleInventoryError(int(record.id))

    monkeypatch.setattr(ledger, "reserve", always_stale)

    svc = ReservationService(session_factory, ledger=ledger, max_retries=1)
    assert svc.max_retries == 1
    with pytest.raises(ConcurrentAllocationError):
        await svc.reserve(order.id, actor_id="u-admin")
    assert calls["n"] == 1

    default = get_settings().RESERVATION_MAX_RETRIES
    assert ReservationService(session_factory).max_retries == default
    with pytest.raises(ValueError):
        ReservationService(session_factory, max_retries=0)


@sqlite_only
@pytest.mark.asyncio
async def test_competing_reservation_between_read_and_write(session_factory, seed, monkeypatch):
    """
    第一次读完候选库位后，另一单抢先占走 6 件并提交；
    本单按旧快照写入被拒，重读后只能拿到剩余的 4 件 → THROW 下报不足，且不超占。
    """
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    mine = await make_order(session_factory, "SO-109", [("v-widget", 5)])
    rival = await make_order(session_factory, "SO-110", [("v-widget", 6)])

    ledger = InventoryLedger()
    real_candidates = ledger.candidates_for_update
    state = {"interleaved": False}

    async def candidates_then_rival(session, variant_id):
        rows = await real_candidates(session, variant_id)
        if not state["interleaved"]:
            state["interleaved"] = True
            await ReservationService(session_factory).reserve(rival.id, actor_id="u-admin")
        return rows

    monkeypatch.setattr(ledger, "candidates_for_update", candidates_then_rival)

    with pytest.raises(InsufficientInventoryError):
        await ReservationService(session_factory, ledger=ledger).reserve(
            mine.id, actor_id="u-admin"
        )

    assert await inventory_by_location(session_factory, "v-widget") == {"loc-a": (10, 6)}
    assert await reserved_total(session_factory, rival.id) == 6
    assert await reserved_total(session_factory, mine.id) == 0


@requires_pg
@pytest.mark.asyncio
async def test_concurrent_reservations_never_oversell(session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    orders = [
        await make_order(session_factory, f"SO-2{i:02d}", [("v-widget", 4)]) for i in range(4)
    ]

    svc = ReservationService(session_factory)
    results = await asyncio.gather(
        *(svc.reserve(o.id, actor_id="u-admin") for o in orders), return_exceptions=True
    )

    ok = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(ok) == 2
    assert all(isinstance(e, InsufficientInventoryError) for e in failed)

    on_hand, reserved = (await inventory_by_location(session_factory, "v-widget"))["loc-a"]
    assert (on_hand, reserved) == (10, 8)

    async with session_factory() as s:
        total = sum(
            (await s.execute(select(InventoryReservation.quantity))).scalars().all()
        )
    assert total == reserved
