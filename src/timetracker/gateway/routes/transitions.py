"""任务状态流转路由

POST /api/tasks/{task_id}/start|pause|complete: assignee 的计时动作。
POST /api/tasks/{task_id}/qc|finalize|reject: admin / leader 的审核动作。
- 200: 流转成功，返回新状态
- 404: 任务不存在
- 409: 当前状态 / 角色不允许该流转
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from timetracker.core.models import Task, TaskAction, User

from ..deps import get_actor, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class TransitionResponse(BaseModel):
    """流转成功响应"""

    task_id: str
    status: str
    total_time_spent: int
    completed_at: str | None


def _response(task: Task) -> TransitionResponse:
    return TransitionResponse(
        task_id=task.id,
        status=task.status.value,
        total_time_spent=task.total_time_spent,
        completed_at=task.completed_at.isoformat() if task.completed_at else None,
    )


@router.post("/api/tasks/{task_id}/start", response_model=TransitionResponse)
async def start_task(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """开始 / 恢复计时；正在计时的其他任务会先被暂停"""
    return _response(await service.start_task(actor, task_id))


@router.post("/api/tasks/{task_id}/pause", response_model=TransitionResponse)
async def pause_task(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return _response(await service.pause_task(actor, task_id))


@router.post("/api/tasks/{task_id}/complete", response_model=TransitionResponse)
async def complete_task(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return _response(await service.complete_task(actor, task_id))


@router.post("/api/tasks/{task_id}/qc", response_model=TransitionResponse)
async def send_to_qc(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return _response(await service.review_task(actor, task_id, TaskAction.SEND_TO_QC))


@router.post("/api/tasks/{task_id}/finalize", response_model=TransitionResponse)
async def finalize_task(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    return _response(await service.review_task(actor, task_id, TaskAction.FINALIZE))


@router.post("/api/tasks/{task_id}/reject", response_model=TransitionResponse)
async def reject_task(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """退回修改（qc -> correction）"""
    return _response(await service.review_task(actor, task_id, TaskAction.REJECT))
