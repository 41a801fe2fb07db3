"""计时会话路由

GET  /api/session: 当前操作员的计时会话（没有则 session 为 null）。
POST /api/session/logout: 暂停所有计时中的任务并清理会话。
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from timetracker.core.models import User
from timetracker.core.timing import format_duration

from ..deps import get_actor, get_task_service
from ..services.task_service import LogoutReport, TaskService

router = APIRouter()


class SessionInfo(BaseModel):
    task_id: str
    start_time: int
    total_duration_at_start: int
    elapsed_seconds: int
    elapsed_display: str


class SessionResponse(BaseModel):
    session: SessionInfo | None


@router.get("/api/session", response_model=SessionResponse)
async def get_session(
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    current = await service.current_session(actor)
    if current is None:
        return SessionResponse(session=None)

    task = await service.get_task_for(actor, current.task_id)
    elapsed = await service.elapsed_for(actor, task)
    return SessionResponse(
        session=SessionInfo(
            task_id=current.task_id,
            start_time=current.start_time,
            total_duration_at_start=current.total_duration_at_start,
            elapsed_seconds=elapsed,
            elapsed_display=format_duration(elapsed),
        )
    )


@router.post("/api/session/logout", response_model=LogoutReport)
async def logout(
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """登出：单个任务 flush 失败不影响登出本身"""
    return await service.logout(actor)
