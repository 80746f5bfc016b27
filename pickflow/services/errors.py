# pickflow/services/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


class AllocationError(Exception):
    """分配引擎统一异常基类（路由层据此翻译为 Problem 响应）。"""

    error_code: str = "allocation_error"


# ---------------- 校验类（任何写入之前拒绝） ----------------


class BatchValidationError(AllocationError):
    error_code = "invalid_batch_request"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


class WorkerNotFoundError(AllocationError):
    """指派对象不存在或已停用"""

    error_code = "worker_not_found"


class NoValidOrdersError(AllocationError):
    """请求里没有任何 PENDING / ALLOCATED 订单"""

    error_code = "no_valid_orders"

    def __init__(self, message: str = "No valid orders found for picking") -> None:
        super().__init__(message)


# ---------------- 状态类 ----------------


class OrderNotFoundError(AllocationError):
    error_code = "order_not_found"


class InvalidOrderStateError(AllocationError):
    error_code = "invalid_order_state"


class NothingToReserveError(AllocationError):
    """订单所有行都已足额预占"""

    error_code = "nothing_to_reserve"


class InvalidTransitionError(AllocationError):
    error_code = "invalid_status_transition"


class TransitionPreconditionError(AllocationError):
    error_code = "transition_precondition_failed"


# ---------------- 并发类 ----------------


class StaleInventoryError(AllocationError):
    """乐观并发：读到的库存版本已被其他事务修改"""

    error_code = "stale_inventory"

    def __init__(self, inventory_id: int) -> None:
        super().__init__(f"inventory row {inventory_id} changed concurrently")
        self.inventory_id = inventory_id


class ConcurrentAllocationError(AllocationError):
    """重试次数耗尽仍然冲突"""

    error_code = "concurrent_allocation"


class OrderAlreadyAllocatingError(AllocationError):
    error_code = "order_already_allocating"

    def __init__(self, order_ids: Sequence[str]) -> None:
        self.order_ids = list(order_ids)
        super().__init__(
            f"Order(s) already being allocated by another request: {', '.join(self.order_ids)}"
        )


# ---------------- 库存 / 批次 / 写入 ----------------


@dataclass
class Shortfall:
    """某订单行的缺口（预占或拣货规划阶段均使用）"""

    order_id: str
    order_item_id: str
    product_variant_id: str
    sku: Optional[str]
    requested: int
    covered: int

    @property
    def short(self) -> int:
        return self.requested - self.covered


class InsufficientInventoryError(AllocationError):
    error_code = "insufficient_inventory"

    def __init__(self, order_id: str, shortfalls: Sequence[Shortfall], order_number: Optional[str] = None) -> None:
        self.order_id = order_id
        self.order_number = order_number
        self.shortfalls = list(shortfalls)
        parts = [f"{s.sku or s.product_variant_id} short by {s.short}" for s in self.shortfalls]
        super().__init__(
            f"Insufficient inventory for order {order_number or order_id}: " + "; ".join(parts)
        )


class BatchAllocationError(AllocationError):
    """批次内某订单预占失败：整个请求失败，但更早订单的预占保持已提交"""

    error_code = "batch_allocation_failed"

    def __init__(self, order_id: str, cause: AllocationError, committed_order_ids: Sequence[str]) -> None:
        self.order_id = order_id
        self.cause = cause
        self.committed_order_ids = list(committed_order_ids)
        super().__init__(f"Failed to allocate order {order_id}: {cause}")


class WriteConsistencyError(AllocationError):
    error_code = "pick_list_write_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Failed to create all pick list items. Expected {expected}, got {actual}"
        )


class EmptyPickPlanError(AllocationError):
    """整批一个拣货行都排不出来（全部缺货 / 已全部在其他拣货单上）"""

    error_code = "empty_pick_plan"
