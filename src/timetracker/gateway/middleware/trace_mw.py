"""TraceMiddleware -- 为任务操作绑定 trace_id

trace_id 从 /api/tasks/{task_id}[/action] 路径中提取 task_id 生成，
贯穿该任务的流转、flush 和通知派生日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

ULID_LENGTH = 26


def extract_task_id(path: str) -> str | None:
    """从路径中提取 task_id，不是任务路径时返回 None"""
    parts = path.strip("/").split("/")
    if len(parts) >= 3 and parts[0] == "api" and parts[1] == "tasks":
        task_id = parts[2]
        if len(task_id) == ULID_LENGTH:
            return task_id
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(
                task_id=task_id,
                trace_id=f"trace-{task_id}",
            )

        return await call_next(request)
