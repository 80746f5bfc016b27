# pickflow/obs/metrics.py
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 拣货单创建成功（头 + 行 + 事件同一事务提交后 +1）
pick_lists_created_total = Counter("pick_lists_created_total", "Pick lists created")

# 预占结果：result = success / partial / insufficient / conflict
reservations_total = Counter(
    "reservations_total", "Inventory reservations", ["policy", "result"]
)

# 批次失败原因：error_code
allocation_failures_total = Counter(
    "allocation_failures_total", "Pick batch allocation failures", ["reason"]
)

# 拣货规划阶段未能覆盖的件数
pick_shortfall_units_total = Counter(
    "pick_shortfall_units_total", "Units that could not be placed on a pick list"
)

notifications_total = Counter("notifications_total", "Worker notifications", ["result"])

pick_batch_duration = Histogram(
    "pick_batch_duration_seconds", "End-to-end pick batch creation seconds"
)


def _path_label(request) -> str:
    # 用路由模板做 label，避免 /pick-lists/{id} 把基数撑爆
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        path = _path_label(request)
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response
