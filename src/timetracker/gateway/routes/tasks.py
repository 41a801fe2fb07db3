"""任务查询 / 创建 / 分配路由

GET  /api/tasks: 按角色可见范围列出任务，created_at 倒序。
GET  /api/tasks/{task_id}: 任务详情，含当前操作员视角的实时累计时长。
POST /api/tasks: admin / 项目 leader 创建任务。
POST /api/tasks/{task_id}/assign: 重新分配任务。
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from timetracker.core.models import Task, User
from timetracker.core.timing import format_duration

from ..deps import get_actor, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class TaskSummary(BaseModel):
    """任务摘要（列表项）"""

    id: str
    title: str
    project_id: str
    assigned_to: str | None
    status: str
    total_time_spent: int
    completed_at: str | None
    created_at: str
    updated_at: str


class TaskListResponse(BaseModel):
    """任务列表响应"""

    tasks: list[TaskSummary]


class TaskDetail(TaskSummary):
    """任务详情"""

    description: str
    created_by: str | None
    version: int
    elapsed_seconds: int = Field(description="持久化累计 + 本客户端会话的实时增量")
    elapsed_display: str = Field(description="HH:MM:SS")
    timing: bool = Field(description="当前操作员是否正在计时该任务")


class CreateTaskRequest(BaseModel):
    title: str = Field(min_length=1)
    project_id: str
    assigned_to: str | None = None
    description: str = ""


class AssignTaskRequest(BaseModel):
    assigned_to: str


def task_summary(task: Task) -> TaskSummary:
    return TaskSummary(
        id=task.id,
        title=task.title,
        project_id=task.project_id,
        assigned_to=task.assigned_to,
        status=task.status.value,
        total_time_spent=task.total_time_spent,
        completed_at=task.completed_at.isoformat() if task.completed_at else None,
        created_at=task.created_at.isoformat(),
        updated_at=task.updated_at.isoformat(),
    )


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """digitador 看到分配给自己的任务；leader 看到自己项目的任务；admin 看到全部"""
    tasks = await service.list_tasks_for(actor)
    return TaskListResponse(tasks=[task_summary(t) for t in tasks])


@router.get("/api/tasks/{task_id}", response_model=TaskDetail)
async def get_task_detail(
    task_id: str,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    """查询任务详情；elapsed 是读时投影，不写库"""
    task = await service.get_task_for(actor, task_id)
    elapsed = await service.elapsed_for(actor, task)
    current = await service.current_session(actor)

    return TaskDetail(
        **task_summary(task).model_dump(),
        description=task.description,
        created_by=task.created_by,
        version=task.version,
        elapsed_seconds=elapsed,
        elapsed_display=format_duration(elapsed),
        timing=current is not None and current.task_id == task.id,
    )


@router.post("/api/tasks", status_code=201, response_model=TaskSummary)
async def create_task(
    body: CreateTaskRequest,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    task = await service.create_task(
        actor,
        title=body.title,
        project_id=body.project_id,
        assigned_to=body.assigned_to,
        description=body.description,
    )
    return task_summary(task)


@router.post("/api/tasks/{task_id}/assign", response_model=TaskSummary)
async def assign_task(
    task_id: str,
    body: AssignTaskRequest,
    actor: User = Depends(get_actor),
    service: TaskService = Depends(get_task_service),
):
    task = await service.assign_task(actor, task_id, body.assigned_to)
    return task_summary(task)
