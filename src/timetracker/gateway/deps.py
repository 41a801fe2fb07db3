"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Depends, Header, Request
from timetracker.core.models import User
from timetracker.core.store import StoreGroup

from .services.notification_hub import NotificationHub
from .services.task_service import TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_task_service(request: Request) -> TaskService:
    """从 app.state 获取 TaskService 实例"""
    return request.app.state.task_service


def get_notification_hub(request: Request) -> NotificationHub:
    """从 app.state 获取 NotificationHub 实例"""
    return request.app.state.notification_hub


async def get_actor(
    x_user_id: str | None = Header(default=None),
    service: TaskService = Depends(get_task_service),
) -> User:
    """从 X-User-Id 请求头解析操作者（认证本身由上游负责）"""
    return await service.get_actor(x_user_id)
