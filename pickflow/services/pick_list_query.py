# pickflow/services/pick_list_query.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import lazyload

from pickflow.models.enums import PickListStatus
from pickflow.models.pick_list import PickList
from pickflow.models.pick_list_item import PickListItem
from pickflow.services.pick_list_writer import PickListWriter


def parse_status_filter(raw: Optional[str]) -> Optional[List[PickListStatus]]:
    """
    "ASSIGNED" / "ASSIGNED,IN_PROGRESS" / "ALL" / 空 → 状态列表；None 表示不过滤。
    非法值抛 ValueError。
    """
    if raw is None or not raw.strip():
        return None
    parts = [p.strip().upper() for p in raw.split(",") if p.strip()]
    if not parts or "ALL" in parts:
        return None
    return [PickListStatus(p) for p in parts]


@dataclass
class PickListSummary:
    pick_list: PickList
    total_quantity: int
    picked_quantity: int

    @property
    def completion_rate(self) -> int:
        if self.total_quantity <= 0:
            return 0
        return round(self.picked_quantity / self.total_quantity * 100)

    @property
    def items_remaining(self) -> int:
        return self.total_quantity - self.picked_quantity


@dataclass
class PickListPage:
    items: List[PickListSummary]
    total_count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.limit) if self.limit else 0


async def list_pick_lists(
    session: AsyncSession,
    *,
    statuses: Optional[Sequence[PickListStatus]] = None,
    page: int = 1,
    limit: int = 20,
) -> PickListPage:
    """新建在前；totalItems / pickedItems 按拣货行数量汇总（不是行数）"""
    page = max(1, int(page))
    limit = max(1, int(limit))

    where = []
    if statuses:
        where.append(PickList.status.in_(list(statuses)))

    total = int(
        (await session.execute(select(func.count(PickList.id)).where(*where))).scalar_one()
    )

    stmt = (
        select(
            PickList,
            func.coalesce(func.sum(PickListItem.quantity_to_pick), 0),
            func.coalesce(func.sum(PickListItem.quantity_picked), 0),
        )
        .outerjoin(PickListItem, PickListItem.pick_list_id == PickList.id)
        .where(*where)
        .group_by(PickList.id)
        .order_by(PickList.created_at.desc(), PickList.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .options(lazyload(PickList.items))
    )
    rows = (await session.execute(stmt)).all()
    return PickListPage(
        items=[
            PickListSummary(pick_list=pl, total_quantity=int(tq), picked_quantity=int(pq))
            for pl, tq, pq in rows
        ],
        total_count=total,
        page=page,
        limit=limit,
    )


async def get_pick_list(session: AsyncSession, pick_list_id: str) -> Optional[PickList]:
    return await PickListWriter.load(session, pick_list_id)
