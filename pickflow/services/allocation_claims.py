# pickflow/services/allocation_claims.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from pickflow.core.config import get_settings
from pickflow.db.uow import SessionOrFactory, UnitOfWork
from pickflow.models._ids import new_id, utcnow
from pickflow.models.allocation_claim import OrderAllocationClaim
from pickflow.services.errors import OrderAlreadyAllocatingError

log = logging.getLogger("pickflow.claims")


class AllocationClaims:
    """
    订单级互斥：同一订单同一时刻只允许一个“预占 + 出拣货单”请求在途。

    - claim：一次事务内为全部订单插入占用行；任何一单被他人持有 → 快速失败
    - 超过 TTL 的占用视为进程崩溃遗留，直接接管
    - release：只删自己 token 的行
    """

    def __init__(self, session_factory: SessionOrFactory, *, ttl_seconds: Optional[int] = None) -> None:
        self.session_factory = session_factory
        if ttl_seconds is None:
            ttl_seconds = get_settings().ALLOCATION_CLAIM_TTL_SECONDS
        if ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be >= 1, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds

    async def claim(self, order_ids: Sequence[str], *, actor_id: str) -> str:
        ids = list(dict.fromkeys(order_ids))
        token = new_id()
        now = utcnow()
        cutoff = now - timedelta(seconds=self.ttl_seconds)

        try:
            async with UnitOfWork(self.session_factory) as uow:
                session = uow.session
                stale = await session.execute(
                    delete(OrderAllocationClaim).where(
                        OrderAllocationClaim.order_id.in_(ids),
                        OrderAllocationClaim.claimed_at < cutoff,
                    )
                )
                if stale.rowcount:
                    log.warning("took over %d stale allocation claim(s)", stale.rowcount)

                held: List[str] = list(
                    (
                        await session.execute(
                            select(OrderAllocationClaim.order_id).where(
                                OrderAllocationClaim.order_id.in_(ids)
                            )
                        )
                    ).scalars()
                )
                if held:
                    raise OrderAlreadyAllocatingError([i for i in ids if i in set(held)])

                session.add_all(
                    [
                        OrderAllocationClaim(
                            order_id=oid, claim_token=token, claimed_by=actor_id, claimed_at=now
                        )
                        for oid in ids
                    ]
                )
                await session.flush()
        except IntegrityError as e:
            # 两个请求同时插同一 order_id：后到者撞主键
            raise OrderAlreadyAllocatingError(ids) from e
        except OrderAlreadyAllocatingError as e:
            log.info("allocation claim conflict: %s", ", ".join(e.order_ids))
            raise

        log.debug("claimed %d order(s) token=%s", len(ids), token)
        return token

    async def release(self, order_ids: Sequence[str], token: str) -> None:
        async with UnitOfWork(self.session_factory) as uow:
            await uow.session.execute(
                delete(OrderAllocationClaim).where(
                    OrderAllocationClaim.order_id.in_(list(order_ids)),
                    OrderAllocationClaim.claim_token == token,
                )
            )

    @asynccontextmanager
    async def hold(self, order_ids: Sequence[str], *, actor_id: str) -> AsyncIterator[str]:
        token = await self.claim(order_ids, actor_id=actor_id)
        try:
            yield token
        finally:
            await self.release(order_ids, token)
