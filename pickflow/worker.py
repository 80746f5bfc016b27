# pickflow/worker.py
# Celery Worker（通知等带外任务 + 测试态 send_task 同步执行）
from __future__ import annotations

import os
from typing import Any, Dict

from celery import Celery
from celery.result import EagerResult

from pickflow.core.config import get_settings

_settings = get_settings()

celery = Celery(
    "pickflow",
    broker=_settings.REDIS_URL,
    backend=_settings.CELERY_RESULT_BACKEND,
    include=["pickflow.tasks.notifications"],
)

# 基本配置
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.broker_transport_options = {"visibility_timeout": 3600}
celery.conf.task_routes = {"pickflow.notify_user": {"queue": "notifications"}}

# === 测试/CI：任务在本进程直接执行，避免等待外部 worker ===
_TESTING = bool(os.getenv("PYTEST_CURRENT_TEST")) or _settings.CELERY_ALWAYS_EAGER
if _TESTING:
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = True

    # send_task 不受 always_eager 影响，这里对本 app 已注册的任务做同步执行
    _orig_send_task = celery.send_task

    def _sync_send_task(name: str, args: Any | None = None, kwargs: Dict[str, Any] | None = None, **opts):
        task = celery.tasks.get(name)
        if task is None:
            return _orig_send_task(name, args=args, kwargs=kwargs, **opts)
        res = task.apply(args=args or (), kwargs=kwargs or {}, throw=True)
        if isinstance(res, EagerResult):
            return res
        return EagerResult(id=res.id, result=res.result, state=res.state, traceback=None)

    celery.send_task = _sync_send_task

# import 以注册所有任务
import pickflow.tasks.notifications  # noqa: E402,F401
