# tests/api/test_orders_api.py
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from pickflow.models import OrderAllocationClaim, OrderStatus
from pickflow.models._ids import new_id, utcnow
from tests.factories import (
    add_inventory,
    inventory_by_location,
    make_order,
    order_status,
    reserved_total,
)

pytestmark = pytest.mark.asyncio

ADMIN = {"X-User-Id": "u-admin"}


async def _claims_left(session_factory) -> int:
    async with session_factory() as s:
        return (
            await s.execute(select(func.count()).select_from(OrderAllocationClaim))
        ).scalar_one()


async def test_reserve_throw_success(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-R1", [("v-widget", 4)])

    r = await client.post(f"/orders/{order.id}/reserve", headers=ADMIN)

    assert r.status_code == 200, r.text
    data = r.json()
    assert data["success"] is True
    assert data["policy"] == "throw"
    assert data["orderStatus"] == "ALLOCATED"
    assert [(x["locationId"], x["quantity"]) for x in data["reservations"]] == [("loc-a", 4)]


async def test_reserve_throw_insufficient_is_409(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 2)
    order = await make_order(session_factory, "SO-R2", [("v-widget", 4)])

    r = await client.post(f"/orders/{order.id}/reserve", headers=ADMIN)

    assert r.status_code == 409
    body = r.json()
    assert body["error_code"] == "insufficient_inventory"
    assert body["details"][0]["sku"] == "SKU-WIDGET"
    assert body["details"][0]["short"] == 2
    assert "error" not in body
    assert await inventory_by_location(session_factory, "v-widget") == {"loc-a": (2, 0)}
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING


async def test_reserve_partial_returns_shortfalls(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 2)
    order = await make_order(session_factory, "SO-R3", [("v-widget", 4)])

    r = await client.post(
        f"/orders/{order.id}/reserve", params={"policy": "partial"}, headers=ADMIN
    )

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is False
    assert data["orderStatus"] == "ALLOCATED"
    assert [(s["requested"], s["covered"], s["short"]) for s in data["shortfalls"]] == [(4, 2, 2)]


async def test_reserve_errors(client, session_factory, seed):
    r = await client.post("/orders/missing/reserve", headers=ADMIN)
    assert r.status_code == 404
    assert r.json()["error_code"] == "order_not_found"

    shipped = await make_order(
        session_factory, "SO-R4", [("v-widget", 1)], status=OrderStatus.SHIPPED
    )
    r = await client.post(f"/orders/{shipped.id}/reserve", headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_order_state"

    r = await client.post(f"/orders/{shipped.id}/reserve?policy=maybe", headers=ADMIN)
    assert r.status_code == 422


async def test_reserve_is_409_while_order_is_being_allocated(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-P1", [("v-widget", 3)])
    async with session_factory() as s:
        s.add(
            OrderAllocationClaim(
                order_id=order.id, claim_token=new_id(), claimed_by="u-admin", claimed_at=utcnow()
            )
        )
        await s.commit()

    r = await client.post(f"/orders/{order.id}/reserve", headers=ADMIN)

    assert r.status_code == 409, r.text
    body = r.json()
    assert body["error_code"] == "order_already_allocating"
    assert body["context"]["order_ids"] == [order.id]
    assert await reserved_total(session_factory, order.id) == 0
    assert await order_status(session_factory, order.id) == OrderStatus.PENDING
    # 别人的占用不被释放
    assert await _claims_left(session_factory) == 1


async def test_reserve_releases_its_claim(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-P2", [("v-widget", 3)])

    r = await client.post(f"/orders/{order.id}/reserve", headers=ADMIN)
    assert r.status_code == 200
    assert await _claims_left(session_factory) == 0

    # 失败路径同样释放
    short = await make_order(session_factory, "SO-P3", [("v-widget", 50)])
    r = await client.post(f"/orders/{short.id}/reserve", headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["error_code"] == "insufficient_inventory"
    assert await _claims_left(session_factory) == 0


async def test_status_history_follows_batch(client, session_factory, seed):
    await add_inventory(session_factory, "v-widget", "loc-a", 10)
    order = await make_order(session_factory, "SO-H1", [("v-widget", 2)])

    r = await client.post(
        "/pick-lists", json={"orderIds": [order.id], "assignedTo": "u-picker"}, headers=ADMIN
    )
    assert r.status_code == 201
    batch = r.json()["batchNumber"]

    r = await client.get(f"/orders/{order.id}/status-history", headers=ADMIN)
    assert r.status_code == 200
    data = r.json()
    assert data["orderNumber"] == "SO-H1"
    assert data["status"] == "PICKING"
    assert [(h["previousStatus"], h["newStatus"], h["changedBy"]) for h in data["history"]] == [
        ("PENDING", "ALLOCATED", "u-admin"),
        ("ALLOCATED", "PICKING", "u-admin"),
    ]
    assert data["history"][1]["notes"] == f"Added to pick list {batch}"

    r = await client.get("/orders/missing/status-history", headers=ADMIN)
    assert r.status_code == 404


async def test_health_and_metrics(client, seed):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "up"}

    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "http_requests_total" in r.text
