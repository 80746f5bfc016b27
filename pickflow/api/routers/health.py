# pickflow/api/routers/health.py
from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest, multiprocess
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickflow.api.deps import get_session_factory
from pickflow.db.uow import UnitOfWork

log = logging.getLogger("pickflow.api")

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    try:
        async with UnitOfWork(session_factory) as uow:
            await uow.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.warning("health check: database unreachable: %s", e)
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "down"})
    return {"status": "ok", "database": "up"}


@router.get("/metrics")
def metrics() -> Response:
    """
    单进程模式直接导出默认 REGISTRY；
    多进程模式（设置了 PROMETHEUS_MULTIPROC_DIR）合并各分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
