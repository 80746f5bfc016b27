# pickflow/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypedDict

from fastapi import HTTPException

from pickflow.services.errors import (
    AllocationError,
    BatchAllocationError,
    BatchValidationError,
    ConcurrentAllocationError,
    EmptyPickPlanError,
    InsufficientInventoryError,
    InvalidOrderStateError,
    InvalidTransitionError,
    NoValidOrdersError,
    NothingToReserveError,
    OrderAlreadyAllocatingError,
    OrderNotFoundError,
    StaleInventoryError,
    TransitionPreconditionError,
    WorkerNotFoundError,
    WriteConsistencyError,
)


class ProblemDetail(TypedDict, total=False):
    # 必填
    type: str  # validation|shortage|state|concurrency|write
    # 可选：用于行内定位
    path: str  # e.g. orderIds[2]
    reason: str

    order_id: str
    order_item_id: str
    product_variant_id: str
    sku: Optional[str]
    requested: int
    covered: int
    short: int


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[ProblemDetail]] = None
    trace_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.error:
            out["error"] = self.error
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    trace_id: Optional[str] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        trace_id=trace_id,
        error=error,
    )
    return p.to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
) -> None:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            details=details,
        ),
    )


def raise_400(error_code: str, message: str, *, details: Optional[Sequence[ProblemDetail]] = None) -> None:
    raise_problem(status_code=400, error_code=error_code, message=message, details=details)


def raise_404(error_code: str, message: str) -> None:
    raise_problem(status_code=404, error_code=error_code, message=message)


# ---------------- AllocationError → HTTP ----------------

# 按 MRO 匹配，子类在前
_STATUS_BY_ERROR: Tuple[Tuple[Type[AllocationError], int], ...] = (
    (BatchValidationError, 400),
    (WorkerNotFoundError, 400),
    (NoValidOrdersError, 400),
    (InvalidOrderStateError, 400),
    (NothingToReserveError, 400),
    (InvalidTransitionError, 400),
    (TransitionPreconditionError, 400),
    (OrderNotFoundError, 404),
    (OrderAlreadyAllocatingError, 409),
    (InsufficientInventoryError, 409),
    (ConcurrentAllocationError, 409),
    (StaleInventoryError, 409),
    (BatchAllocationError, 500),
    (WriteConsistencyError, 500),
    (EmptyPickPlanError, 500),
)


def status_for(exc: AllocationError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _shortage_details(exc: InsufficientInventoryError) -> List[ProblemDetail]:
    out: List[ProblemDetail] = []
    for s in exc.shortfalls:
        out.append(
            {
                "type": "shortage",
                "order_id": s.order_id,
                "order_item_id": s.order_item_id,
                "product_variant_id": s.product_variant_id,
                "sku": s.sku,
                "requested": s.requested,
                "covered": s.covered,
                "short": s.short,
            }
        )
    return out


def problem_from_allocation_error(exc: AllocationError) -> Tuple[int, Dict[str, Any]]:
    """
    领域异常 → (status, Problem dict)。trace_id / 请求上下文由全局 handler 补齐。
    """
    status = status_for(exc)
    context: Dict[str, Any] = {}
    details: List[ProblemDetail] = []

    if isinstance(exc, BatchValidationError):
        details = [{"type": "validation", **d} for d in exc.details]
    elif isinstance(exc, InsufficientInventoryError):
        context["order_id"] = exc.order_id
        details = _shortage_details(exc)
    elif isinstance(exc, OrderAlreadyAllocatingError):
        context["order_ids"] = exc.order_ids
    elif isinstance(exc, BatchAllocationError):
        context["order_id"] = exc.order_id
        context["committed_order_ids"] = exc.committed_order_ids
        context["cause"] = exc.cause.error_code
        if isinstance(exc.cause, InsufficientInventoryError):
            details = _shortage_details(exc.cause)
        else:
            details = [{"type": "state", "reason": str(exc.cause)}]
    elif isinstance(exc, WriteConsistencyError):
        context["expected"] = exc.expected
        context["actual"] = exc.actual
        details = [{"type": "write", "reason": str(exc)}]

    return status, make_problem(
        status_code=status,
        error_code=exc.error_code,
        message=str(exc),
        context=context or None,
        details=details or None,
        error="Failed to create pick list" if status >= 500 else None,
    )
