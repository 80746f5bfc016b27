# pickflow/tasks/notifications.py
from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from pickflow.core.config import get_settings
from pickflow.worker import celery

log = logging.getLogger("pickflow.notify")


@celery.task(name="pickflow.notify_user")
def notify_user(user_id: str, payload: Dict[str, Any]) -> str:
    """
    把通知推给外部推送网关（实时通道本身不在本服务内）。

    未配置 NOTIFY_PUSH_URL → 只记日志，返回 SKIPPED。
    HTTP 失败直接抛出，由调用方 / worker 记录；不会回头影响任何业务数据。
    """
    settings = get_settings()
    url = settings.NOTIFY_PUSH_URL
    if not url:
        log.info("notify_user(%s) %s: no push url configured, skipped", user_id, payload.get("type"))
        return "SKIPPED"

    with httpx.Client(timeout=settings.NOTIFY_TIMEOUT_SECONDS) as client:
        resp = client.post(url, json={"userId": user_id, "notification": payload})
        resp.raise_for_status()

    log.info("notify_user(%s) %s delivered", user_id, payload.get("type"))
    return "SENT"
