# pickflow/db/session.py
# 统一的异步引擎 / 会话工厂 + FastAPI 依赖（get_session_factory）
from __future__ import annotations

import logging
import re
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pickflow.core.config import get_settings

log = logging.getLogger("pickflow.db")


def normalize_async_dsn(url: str) -> str:
    """把 sync / 历史写法的 DSN 统一到 psycopg3 与 aiosqlite。"""
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://..."'，统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def build_async_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    kwargs: dict = {"echo": echo}
    if dsn.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(dsn, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_async_engine() -> AsyncEngine:
    settings = get_settings()
    engine = build_async_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    log.info("[DB] Using DSN (async): %s", engine.url.render_as_string(hide_password=True))
    return engine


@lru_cache
def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    return build_session_factory(get_async_engine())


# ---- FastAPI 依赖 ----
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    服务层自己控事务（UnitOfWork），因此路由拿到的是工厂而不是现成 Session。
    测试通过 app.dependency_overrides 替换。
    """
    return _default_session_factory()


async def close_engines() -> None:
    if get_async_engine.cache_info().currsize:
        await get_async_engine().dispose()
