# pickflow/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickflow.api.problem import raise_problem
from pickflow.db.session import get_session_factory
from pickflow.db.uow import UnitOfWork
from pickflow.models.user import User
from pickflow.services.notification_dispatcher import NotificationDispatcher


# ---------------------------
# 当前操作人
# ---------------------------


async def get_current_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> User:
    """
    会话解析在上游网关完成，这里只认 X-User-Id：

    - 缺失 / 用户不存在 / 已停用 → 401
    """
    uid = (x_user_id or "").strip()
    if not uid:
        raise_problem(status_code=401, error_code="unauthorized", message="Unauthorized")

    async with UnitOfWork(session_factory) as uow:
        user = await uow.session.get(User, uid)

    if user is None or not user.is_active:
        raise_problem(status_code=401, error_code="unauthorized", message="Unauthorized")
    return user


# ---------------------------
# 通知
# ---------------------------

_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


__all__ = ["get_current_actor", "get_notification_dispatcher", "get_session_factory"]
