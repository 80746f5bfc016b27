# pickflow/services/notification_dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pickflow.models._ids import utcnow
from pickflow.models.pick_list import PickList
from pickflow.obs.metrics import notifications_total

log = logging.getLogger("pickflow.notify")

NOTIFY_TASK = "pickflow.notify_user"


def build_assignment_payload(
    pick_list: PickList,
    *,
    assigned_by: str,
    priority: Optional[int] = None,
) -> Dict[str, Any]:
    orders: Dict[str, Dict[str, Any]] = {}
    for it in pick_list.items:
        if it.order_id in orders or it.order is None:
            continue
        orders[it.order_id] = {
            "orderId": it.order_id,
            "orderNumber": it.order.order_number,
            "customerName": it.order.customer_name,
        }
    order_summaries: List[Dict[str, Any]] = list(orders.values())

    return {
        "type": "PICK_LIST_ASSIGNED",
        "title": "New pick list assigned",
        "message": (
            f"Pick list {pick_list.batch_number} with {pick_list.total_items} item(s) "
            f"from {len(order_summaries)} order(s) has been assigned to you"
        ),
        "link": f"/dashboard/picking/mobile/{pick_list.id}",
        "metadata": {
            "pickListId": pick_list.id,
            "batchNumber": pick_list.batch_number,
            "totalItems": pick_list.total_items,
            "totalOrders": len(order_summaries),
            "assignedBy": assigned_by,
            "assignedAt": utcnow().isoformat(),
            "priority": pick_list.priority if priority is None else priority,
            "orders": order_summaries,
        },
    }


class NotificationDispatcher:
    """
    尽力而为的通知：交给 Celery 任务后立即返回。

    任何异常只记日志 + 计数，绝不向上抛；也不碰任何数据库状态。
    """

    def __init__(self, celery_app=None) -> None:
        self._celery = celery_app

    @property
    def celery(self):
        if self._celery is None:
            from pickflow.worker import celery

            self._celery = celery
        return self._celery

    def notify(self, worker_id: str, payload: Dict[str, Any]) -> bool:
        try:
            self.celery.send_task(NOTIFY_TASK, kwargs={"user_id": worker_id, "payload": payload})
        except Exception:
            notifications_total.labels("failed").inc()
            log.exception(
                "failed to notify user %s (%s); pick list is unaffected",
                worker_id,
                payload.get("type"),
            )
            return False
        notifications_total.labels("sent").inc()
        return True
