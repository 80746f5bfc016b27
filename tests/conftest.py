# tests/conftest.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# ============================================================
# 在 import pickflow.main 之前固定测试态配置
# ============================================================
os.environ.setdefault("PICKFLOW_CELERY_ALWAYS_EAGER", "1")
os.environ.setdefault("PICKFLOW_ENV", "test")

from pickflow.db.base import Base, init_models  # noqa: E402
from pickflow.db.session import build_session_factory, get_session_factory, normalize_async_dsn  # noqa: E402
from pickflow.main import app  # noqa: E402
from pickflow.models import Location, ProductVariant, User  # noqa: E402
from tests.factories import PG_URL  # noqa: E402

init_models()


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = normalize_async_dsn(PG_URL) if PG_URL else f"sqlite+aiosqlite:///{tmp_path / 'pickflow.db'}"
    engine = create_async_engine(url, poolclass=NullPool, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """断言用的只读会话（每次查询前请自行 expire / 重新 select）"""
    async with session_factory() as sess:
        yield sess


# =========================================
# 最小种子数据
# =========================================
@dataclass
class Seed:
    admin: User
    picker: User
    inactive: User
    widget: ProductVariant
    gadget: ProductVariant
    loc_a: Location
    loc_b: Location
    loc_c: Location


@pytest_asyncio.fixture(scope="function")
async def seed(session_factory) -> Seed:
    async with session_factory() as s:
        data = Seed(
            admin=User(id="u-admin", username="admin", full_name="Ada Admin", role="ADMIN"),
            picker=User(id="u-picker", username="picker", full_name="Pat Picker", role="PICKER"),
            inactive=User(id="u-gone", username="gone", role="PICKER", is_active=False),
            widget=ProductVariant(id="v-widget", sku="SKU-WIDGET", name="Widget"),
            gadget=ProductVariant(id="v-gadget", sku="SKU-GADGET", name="Gadget"),
            loc_a=Location(id="loc-a", name="A-01-01", zone="A"),
            loc_b=Location(id="loc-b", name="B-01-01", zone="B"),
            loc_c=Location(id="loc-c", name="C-01-01", zone="C"),
        )
        s.add_all(
            [
                data.admin,
                data.picker,
                data.inactive,
                data.widget,
                data.gadget,
                data.loc_a,
                data.loc_b,
                data.loc_c,
            ]
        )
        await s.commit()
    return data


# =========================================
# FastAPI / httpx AsyncClient
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
