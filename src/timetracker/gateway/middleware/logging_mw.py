"""LoggingMiddleware -- 请求级 request_id + 访问日志

客户端带合法的 X-Request-ID（ULID）时沿用，SSE 断线重连的多次请求可共用同一个 ID；
否则生成新的 ULID。X-User-Id 一并绑定，服务层日志自动带上操作者。
SSE 请求只记录连接建立，流结束时间不计入 duration_ms。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

STREAM_PATH_PREFIX = "/api/stream/"


def resolve_request_id(header_value: str | None) -> str:
    """沿用合法的客户端 request_id，否则生成新的"""
    if header_value:
        try:
            return str(ULID.from_str(header_value))
        except ValueError:
            pass
    return str(ULID())


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = resolve_request_id(request.headers.get("x-request-id"))
        user_id = request.headers.get("x-user-id")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        if user_id:
            structlog.contextvars.bind_contextvars(user_id=user_id)

        log = structlog.get_logger()
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        event = (
            "stream_opened"
            if request.url.path.startswith(STREAM_PATH_PREFIX)
            else "request_completed"
        )
        log_method = log.awarning if response.status_code >= 500 else log.ainfo
        await log_method(
            event,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        response.headers["X-Request-ID"] = request_id
        return response
