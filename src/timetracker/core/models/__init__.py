"""TimeTracker Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .change import ChangeEvent
from .enums import (
    ACTION_ROLES,
    STARTABLE_STATES,
    TERMINAL_STATES,
    TIMED_STATES,
    VALID_TRANSITIONS,
    ChangeType,
    NotificationType,
    Role,
    TaskAction,
    TaskStatus,
    validate_transition,
)
from .notification import Notification
from .session import TimerSession
from .task import Project, Task, User

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskAction",
    "Role",
    "NotificationType",
    "ChangeType",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "STARTABLE_STATES",
    "TIMED_STATES",
    "ACTION_ROLES",
    "validate_transition",
    # 实体
    "Task",
    "Project",
    "User",
    "Notification",
    "TimerSession",
    "ChangeEvent",
]
