# pickflow/services/pick_list_writer.py
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.core.config import get_settings
from pickflow.db.uow import SessionOrFactory, UnitOfWork
from pickflow.models._ids import new_id, utcnow
from pickflow.models.enums import PickEventType, PickListItemStatus, PickListStatus
from pickflow.models.pick_event import PickEvent
from pickflow.models.pick_list import PickList
from pickflow.models.pick_list_item import PickListItem
from pickflow.obs.metrics import pick_lists_created_total
from pickflow.services.errors import WriteConsistencyError
from pickflow.services.pick_list_generator import PickListItemDraft

log = logging.getLogger("pickflow.writer")


def make_batch_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """PICK-YYYYMMDD-XXXXXX（后缀 6 位随机十六进制，大写）"""
    prefix = prefix or get_settings().PICK_BATCH_PREFIX
    now = now or utcnow()
    return f"{prefix}-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class PickListHeader:
    assigned_to: str
    priority: int
    order_count: int
    batch_number: Optional[str] = None


class PickListWriter:
    """
    拣货单落库：头 + 行 + PICK_STARTED 事件，同一事务。

    写完后回查行数，与预期不一致 → WriteConsistencyError，整单回滚
    （头、行、事件一个都不留）。
    """

    def __init__(self, session_factory: SessionOrFactory) -> None:
        self.session_factory = session_factory

    async def commit(
        self,
        header: PickListHeader,
        items: Sequence[PickListItemDraft],
        *,
        actor_id: str,
    ) -> PickList:
        async with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            pick_list = PickList(
                id=new_id(),
                batch_number=header.batch_number or make_batch_number(),
                status=PickListStatus.ASSIGNED,
                assigned_to=header.assigned_to,
                priority=header.priority,
                total_items=len(items),
                picked_items=0,
                created_by=actor_id,
            )
            session.add(pick_list)
            await session.flush()

            if items:
                await session.execute(
                    insert(PickListItem),
                    [
                        {
                            "id": new_id(),
                            "pick_list_id": pick_list.id,
                            "order_id": d.order_id,
                            "order_item_id": d.order_item_id,
                            "product_variant_id": d.product_variant_id,
                            "location_id": d.location_id,
                            "quantity_to_pick": d.quantity_to_pick,
                            "quantity_picked": 0,
                            "pick_sequence": d.pick_sequence,
                            "status": PickListItemStatus.PENDING,
                        }
                        for d in items
                    ],
                )

            actual = await self._count_items(session, pick_list.id)
            if actual != len(items):
                log.error(
                    "pick list %s write mismatch: expected %d items, found %d",
                    pick_list.batch_number,
                    len(items),
                    actual,
                )
                raise WriteConsistencyError(len(items), actual)

            session.add(
                PickEvent(
                    pick_list_id=pick_list.id,
                    event_type=PickEventType.PICK_STARTED,
                    user_id=actor_id,
                    notes=f"Pick list created with {len(items)} items from {header.order_count} order(s)",
                )
            )
            await session.flush()

            pick_list = await self.load(session, pick_list.id)

        pick_lists_created_total.inc()
        log.info(
            "pick list %s created: %d item(s), assigned_to=%s",
            pick_list.batch_number,
            pick_list.total_items,
            pick_list.assigned_to,
        )
        return pick_list

    @staticmethod
    async def load(session: AsyncSession, pick_list_id: str) -> Optional[PickList]:
        # 行 / 订单 / 商品 / 库位 / 指派人全部 selectin，一次拿齐
        stmt = (
            select(PickList)
            .where(PickList.id == pick_list_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def _count_items(session: AsyncSession, pick_list_id: str) -> int:
        return int(
            (
                await session.execute(
                    select(func.count())
                    .select_from(PickListItem)
                    .where(PickListItem.pick_list_id == pick_list_id)
                )
            ).scalar_one()
        )
