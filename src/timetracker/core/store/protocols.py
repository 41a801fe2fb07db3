"""Store Protocol 接口定义

定义持久层、快照存储的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

from ..models.enums import TaskStatus
from ..models.notification import Notification
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 id 查询任务"""
        ...

    async def list_tasks(
        self,
        assigned_to: str | None = None,
        project_ids: Iterable[str] | None = None,
        statuses: Iterable[TaskStatus] | None = None,
    ) -> list[Task]:
        """查询任务列表，按创建时间倒序"""
        ...

    async def update_task(self, task: Task, expected_version: int) -> bool:
        """按 version 条件写回整行"""
        ...


class NotificationStore(Protocol):
    """Notification 存储接口"""

    async def insert_notification(self, notification: Notification) -> None:
        """写入通知"""
        ...

    async def list_unread(self, user_id: str) -> list[Notification]:
        """查询用户的未读通知"""
        ...

    async def mark_read(self, notification_id: str) -> bool:
        """标记已读（单向）"""
        ...

    async def check_dedup_key(self, key: str) -> str | None:
        """检查幂等键是否已存在"""
        ...


@runtime_checkable
class SnapshotStore(Protocol):
    """单 key 本地持久快照接口 -- 按设备隔离，登出时清除"""

    async def read(self) -> dict[str, Any] | None:
        """读取快照"""
        ...

    async def write(self, data: dict[str, Any]) -> None:
        """覆盖写入快照"""
        ...

    async def delete(self) -> None:
        """删除快照"""
        ...
