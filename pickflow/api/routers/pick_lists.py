# pickflow/api/routers/pick_lists.py
from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pickflow.api.deps import get_current_actor, get_notification_dispatcher, get_session_factory
from pickflow.api.http_problem_handlers import validation_details
from pickflow.api.problem import raise_400, raise_404
from pickflow.core.config import get_settings
from pickflow.db.uow import UnitOfWork
from pickflow.models.user import User
from pickflow.schemas.pick_list import (
    CreatePickListIn,
    PickBatchOut,
    PickListOut,
    PickListPageOut,
    PickListSummaryOut,
    ShortfallOut,
)
from pickflow.services.allocation_orchestrator import AllocationOrchestrator
from pickflow.services.errors import BatchValidationError
from pickflow.services.notification_dispatcher import (
    NotificationDispatcher,
    build_assignment_payload,
)
from pickflow.services.pick_list_query import get_pick_list, list_pick_lists, parse_status_filter

log = logging.getLogger("pickflow.api")

router = APIRouter(prefix="/pick-lists", tags=["pick-lists"])


async def _read_body(request: Request) -> CreatePickListIn:
    """
    入参在任何写入之前校验；不合法统一 400（而不是框架默认的 422）。
    """
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BatchValidationError(
            "Request body must be valid JSON",
            details=[{"path": "body", "reason": "invalid json"}],
        )
    try:
        return CreatePickListIn.model_validate(raw)
    except ValidationError as e:
        raise BatchValidationError(
            "Invalid pick list request",
            details=[
                {"path": d["path"], "reason": d["reason"]}
                for d in validation_details(e.errors(include_url=False))
            ],
        )


@router.post("", status_code=201, response_model=PickBatchOut)
async def create_pick_list(
    request: Request,
    background: BackgroundTasks,
    actor: User = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> PickBatchOut:
    """
    批量订单 → 预占 → 生成并落库拣货单 → 订单进入 PICKING → 异步通知拣货员。
    """
    body = await _read_body(request)

    result = await AllocationOrchestrator(session_factory).create_pick_batch(
        body.order_ids,
        assigned_to=body.assigned_to,
        priority=body.priority,
        actor_id=actor.id,
    )
    pick_list = result.pick_list

    # 通知在响应之后执行，失败不影响本次结果
    payload = build_assignment_payload(
        pick_list, assigned_by=actor.display_name, priority=body.priority
    )
    background.add_task(dispatcher.notify, body.assigned_to, payload)

    out = PickBatchOut.from_model(pick_list)
    out.shortfalls = [ShortfallOut.from_shortfall(s) for s in result.shortfalls]
    out.deferred_order_ids = result.deferred_order_ids
    return out


@router.get("", response_model=PickListPageOut)
async def list_pick_lists_route(
    status: Optional[str] = Query(None, description="单个状态或逗号分隔；ALL 表示不过滤"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    actor: User = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PickListPageOut:
    settings = get_settings()
    size = min(limit or settings.PICK_LIST_PAGE_SIZE, settings.PICK_LIST_MAX_PAGE_SIZE)

    try:
        statuses = parse_status_filter(status)
    except ValueError:
        raise_400("invalid_status_filter", f"Unknown pick list status: {status}")

    async with UnitOfWork(session_factory) as uow:
        result = await list_pick_lists(uow.session, statuses=statuses, page=page, limit=size)

    return PickListPageOut(
        pick_lists=[PickListSummaryOut.from_summary(s) for s in result.items],
        total_pages=result.total_pages,
        current_page=result.page,
        total_count=result.total_count,
    )


@router.get("/{pick_list_id}", response_model=PickListOut)
async def get_pick_list_route(
    pick_list_id: str,
    actor: User = Depends(get_current_actor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PickListOut:
    async with UnitOfWork(session_factory) as uow:
        pick_list = await get_pick_list(uow.session, pick_list_id)
        if pick_list is None:
            raise_404("pick_list_not_found", f"Pick list {pick_list_id} not found")
        return PickListOut.from_model(pick_list)
