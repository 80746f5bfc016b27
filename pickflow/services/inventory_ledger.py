# pickflow/services/inventory_ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from pickflow.models.inventory import InventoryRecord
from pickflow.models.inventory_reservation import InventoryReservation
from pickflow.models.location import Location
from pickflow.services.errors import StaleInventoryError

log = logging.getLogger("pickflow.ledger")


@dataclass(frozen=True)
class LocationStock:
    """拣货规划用的库位库存快照（纯数据，不挂 ORM 会话）"""

    inventory_id: int
    product_variant_id: str
    location_id: str
    location_name: str
    quantity_on_hand: int
    # 被本批次以外订单预占的数量
    quantity_reserved_elsewhere: int = 0

    @property
    def quantity_pickable(self) -> int:
        return max(0, self.quantity_on_hand - self.quantity_reserved_elsewhere)


class InventoryLedger:
    """
    库存台账唯一读写口径。

    并发约定（读-算-写 整个周期独占每一行）：
      - candidates_for_update：SELECT ... FOR UPDATE 锁住候选行（PG 行锁；SQLite 忽略）
      - reserve：带版本号的条件 UPDATE（compare-and-set），
        影响行数为 0 → StaleInventoryError，由上层整单重试
    两层保护叠加：有行锁时 CAS 永远命中；没有行锁的后端靠 CAS 兜住超占。
    """

    async def candidates_for_update(
        self,
        session: AsyncSession,
        product_variant_id: str,
    ) -> List[InventoryRecord]:
        stmt = (
            select(InventoryRecord)
            .where(InventoryRecord.product_variant_id == product_variant_id)
            .order_by(InventoryRecord.quantity_on_hand.desc(), InventoryRecord.location_id.asc())
            .with_for_update(of=InventoryRecord)
            .execution_options(populate_existing=True)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def reserve(self, session: AsyncSession, record: InventoryRecord, qty: int) -> None:
        """
        对单行库存预占 qty（正整数）。

        WHERE 同时校验 version 与 reserved + qty <= on_hand，
        任何一个不满足都视为“读到的快照已过期”。
        """
        if qty <= 0:
            raise ValueError(f"reserve qty must be positive, got {qty}")

        seen_version = int(record.version)
        res = await session.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.id == record.id,
                InventoryRecord.version == seen_version,
                InventoryRecord.quantity_reserved + qty <= InventoryRecord.quantity_on_hand,
            )
            .values(
                quantity_reserved=InventoryRecord.quantity_reserved + qty,
                version=InventoryRecord.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            log.info(
                "stale inventory row id=%s seen_version=%s qty=%s", record.id, seen_version, qty
            )
            raise StaleInventoryError(int(record.id))

        # 本地对象与库内保持一致（不标脏，flush 时不会再写一遍）
        set_committed_value(record, "quantity_reserved", int(record.quantity_reserved) + qty)
        set_committed_value(record, "version", seen_version + 1)

    async def snapshot_for_variants(
        self,
        session: AsyncSession,
        product_variant_ids: Iterable[str],
        own_order_ids: Iterable[str] = (),
    ) -> Dict[str, List[LocationStock]]:
        """
        非锁定读：各 variant 可拣的库位，按可拣量降序（同量按 location_id）。

        可拣量 = on_hand − (reserved − own_order_ids 在该行的预占)，
        即别的订单占着的货不排给本批次；可拣量为 0 的库位不返回。
        """
        ids: Sequence[str] = sorted(set(product_variant_ids))
        out: Dict[str, List[LocationStock]] = {vid: [] for vid in ids}
        if not ids:
            return out

        owners = sorted(set(own_order_ids))
        own = (
            select(
                InventoryReservation.inventory_id.label("inventory_id"),
                func.sum(InventoryReservation.quantity).label("qty"),
            )
            .where(InventoryReservation.order_id.in_(owners))
            .group_by(InventoryReservation.inventory_id)
            .subquery()
        )
        elsewhere = InventoryRecord.quantity_reserved - func.coalesce(own.c.qty, 0)
        pickable = InventoryRecord.quantity_on_hand - elsewhere

        stmt = (
            select(
                InventoryRecord.id,
                InventoryRecord.product_variant_id,
                InventoryRecord.location_id,
                Location.name,
                InventoryRecord.quantity_on_hand,
                elsewhere,
            )
            .join(Location, Location.id == InventoryRecord.location_id)
            .outerjoin(own, own.c.inventory_id == InventoryRecord.id)
            .where(
                InventoryRecord.product_variant_id.in_(ids),
                pickable > 0,
            )
            .order_by(
                InventoryRecord.product_variant_id,
                pickable.desc(),
                InventoryRecord.location_id.asc(),
            )
        )
        for inv_id, vid, loc_id, loc_name, on_hand, taken in (await session.execute(stmt)).all():
            out[vid].append(
                LocationStock(
                    inventory_id=int(inv_id),
                    product_variant_id=str(vid),
                    location_id=str(loc_id),
                    location_name=str(loc_name),
                    quantity_on_hand=int(on_hand),
                    quantity_reserved_elsewhere=max(0, int(taken)),
                )
            )
        return out
