"""异常 -> HTTP 响应映射

错误响应体统一为 {"error": {"code", "message"}}。
未被服务层包装的 aiosqlite.Error（列表查询等读路径）同样映射为 503 PERSISTENCE_FAILURE。
"""

import aiosqlite
import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse
from timetracker.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceFailureError,
    SessionConflictError,
    TimeTrackerError,
    UnauthenticatedError,
)

log = structlog.get_logger()

# 按 MRO 匹配，子类优先
_STATUS_CODES: list[tuple[type[TimeTrackerError], int]] = [
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (SessionConflictError, 409),
    (PermissionDeniedError, 403),
    (UnauthenticatedError, 401),
    (PersistenceFailureError, 503),
]


def status_code_for(error: TimeTrackerError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def _handle_timetracker_error(request: Request, exc: TimeTrackerError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        log.error(
            "request_failed",
            code=exc.code,
            error=exc.message,
            recoverable=exc.recoverable,
        )
    else:
        log.info("request_rejected", code=exc.code, status_code=status_code)
    return error_response(status_code, exc.code, exc.message)


async def _handle_storage_error(request: Request, exc: aiosqlite.Error) -> JSONResponse:
    return await _handle_timetracker_error(
        request, PersistenceFailureError(request.url.path, exc)
    )


def register_error_handlers(app: FastAPI) -> None:
    """注册 TimeTrackerError / aiosqlite.Error 异常处理器"""
    app.add_exception_handler(TimeTrackerError, _handle_timetracker_error)
    app.add_exception_handler(aiosqlite.Error, _handle_storage_error)
