"""Task State Machine -- 合法流转与副作用的唯一来源

plan_transition 只做校验并返回 TransitionPlan，不做任何写入；
写入、计时会话开关由 TaskService 按照 plan 执行。
"""

from pydantic import BaseModel, Field

from .exceptions import InvalidTransitionError
from .models.enums import (
    ACTION_ROLES,
    STARTABLE_STATES,
    VALID_TRANSITIONS,
    Role,
    TaskAction,
    TaskStatus,
)
from .models.task import Project, Task, User

# 需要操作者是任务 assignee 的动作
_ASSIGNEE_ACTIONS = {TaskAction.START, TaskAction.PAUSE, TaskAction.COMPLETE}

# leader 只能在自己负责的项目内执行的动作
_LEADER_SCOPED_ACTIONS = {TaskAction.FINALIZE, TaskAction.REJECT}


class TransitionPlan(BaseModel):
    """一次合法流转的执行计划"""

    task_id: str
    action: TaskAction
    from_status: TaskStatus
    to_status: TaskStatus
    opens_session: bool = Field(default=False, description="流转后开启计时会话")
    closes_session: bool = Field(default=False, description="流转时 flush 并关闭会话")
    sets_completed_at: bool = Field(default=False, description="首次完成时写入 completed_at")


def can_manage_project(actor: User, project: Project | None) -> bool:
    """admin 管理所有项目；leader 只管理自己负责的项目"""
    if actor.role == Role.ADMIN:
        return True
    return (
        actor.role == Role.LEADER
        and project is not None
        and project.leader_id == actor.id
    )


def plan_transition(
    task: Task,
    action: TaskAction,
    actor: User,
    project: Project | None = None,
) -> TransitionPlan:
    """校验流转并生成执行计划

    Args:
        task: 当前任务（以服务端状态为准）
        action: 请求的动作
        actor: 操作者
        project: 任务所属项目（leader 权限校验需要）

    Returns:
        TransitionPlan

    Raises:
        InvalidTransitionError: 角色、归属或当前状态不允许该动作
    """
    if actor.role not in ACTION_ROLES[action]:
        raise InvalidTransitionError(
            f"Role {actor.role.value} cannot {action.value} tasks"
        )

    if action in _ASSIGNEE_ACTIONS and task.assigned_to != actor.id:
        raise InvalidTransitionError(
            f"Only the assignee can {action.value} task {task.id}"
        )

    if action in _LEADER_SCOPED_ACTIONS and not can_manage_project(actor, project):
        raise InvalidTransitionError(
            f"User {actor.id} does not lead the project of task {task.id}"
        )

    to_status = VALID_TRANSITIONS.get((task.status, action))
    if to_status is None:
        if action == TaskAction.START and task.status not in STARTABLE_STATES:
            raise InvalidTransitionError(
                f"Task {task.id} cannot be started in status {task.status.value}"
            )
        raise InvalidTransitionError(
            f"Cannot {action.value} task {task.id} from status {task.status.value}"
        )

    return TransitionPlan(
        task_id=task.id,
        action=action,
        from_status=task.status,
        to_status=to_status,
        opens_session=action == TaskAction.START,
        closes_session=action in (TaskAction.PAUSE, TaskAction.COMPLETE),
        sets_completed_at=(
            action == TaskAction.COMPLETE and task.completed_at is None
        ),
    )
