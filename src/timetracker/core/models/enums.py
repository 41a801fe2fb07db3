"""枚举定义 -- 任务状态机、角色、通知类型

包含 TaskStatus 状态机、TaskAction、Role、NotificationType、ChangeType 枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    CORRECTION = "correction"
    COMPLETED = "completed"
    QC = "qc"
    FINALIZED = "finalized"


class TaskAction(StrEnum):
    """触发状态流转的动作"""

    START = "start"
    PAUSE = "pause"
    COMPLETE = "complete"
    SEND_TO_QC = "send_to_qc"
    FINALIZE = "finalize"
    REJECT = "reject"


class Role(StrEnum):
    """用户角色"""

    DIGITADOR = "digitador"
    LEADER = "leader"
    ADMIN = "admin"


class NotificationType(StrEnum):
    """通知类型"""

    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"


class ChangeType(StrEnum):
    """行变更类型"""

    INSERT = "INSERT"
    UPDATE = "UPDATE"


# (当前状态, 动作) -> 目标状态
VALID_TRANSITIONS: dict[tuple[TaskStatus, TaskAction], TaskStatus] = {
    (TaskStatus.PENDING, TaskAction.START): TaskStatus.IN_PROGRESS,
    (TaskStatus.PAUSED, TaskAction.START): TaskStatus.IN_PROGRESS,
    # correction 下重新开始计时，状态不变
    (TaskStatus.CORRECTION, TaskAction.START): TaskStatus.CORRECTION,
    (TaskStatus.IN_PROGRESS, TaskAction.PAUSE): TaskStatus.PAUSED,
    (TaskStatus.CORRECTION, TaskAction.PAUSE): TaskStatus.PAUSED,
    (TaskStatus.IN_PROGRESS, TaskAction.COMPLETE): TaskStatus.COMPLETED,
    (TaskStatus.PAUSED, TaskAction.COMPLETE): TaskStatus.COMPLETED,
    (TaskStatus.CORRECTION, TaskAction.COMPLETE): TaskStatus.COMPLETED,
    (TaskStatus.COMPLETED, TaskAction.SEND_TO_QC): TaskStatus.QC,
    (TaskStatus.QC, TaskAction.FINALIZE): TaskStatus.FINALIZED,
    (TaskStatus.QC, TaskAction.REJECT): TaskStatus.CORRECTION,
}

TERMINAL_STATES: set[TaskStatus] = {TaskStatus.FINALIZED}

# 可以开始计时的状态
STARTABLE_STATES: set[TaskStatus] = {
    TaskStatus.PENDING,
    TaskStatus.PAUSED,
    TaskStatus.CORRECTION,
}

# 服务端视角下"正在计时"的状态（登出时需要强制暂停）
TIMED_STATES: set[TaskStatus] = {
    TaskStatus.IN_PROGRESS,
    TaskStatus.CORRECTION,
}

# 各动作允许的角色；digitador 动作还要求是任务的 assignee
ACTION_ROLES: dict[TaskAction, set[Role]] = {
    TaskAction.START: {Role.DIGITADOR},
    TaskAction.PAUSE: {Role.DIGITADOR},
    TaskAction.COMPLETE: {Role.DIGITADOR},
    TaskAction.SEND_TO_QC: {Role.ADMIN},
    TaskAction.FINALIZE: {Role.ADMIN, Role.LEADER},
    TaskAction.REJECT: {Role.ADMIN, Role.LEADER},
}


def validate_transition(from_status: TaskStatus, action: TaskAction) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        action: 触发的动作

    Returns:
        True 如果流转合法，否则 False
    """
    return (from_status, action) in VALID_TRANSITIONS
