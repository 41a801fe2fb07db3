"""Notification Domain Model

通知由 Reconciler 根据 task 变更派生；dedup_key 唯一，保证重复投递不会重复写入。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import NotificationType


class Notification(BaseModel):
    """Notification 数据模型"""

    id: str = Field(description="唯一标识，ULID 格式")
    user_id: str = Field(description="接收者用户 ID")
    message: str = Field(description="可读消息")
    type: NotificationType = Field(default=NotificationType.INFO, description="通知类型")
    read: bool = Field(default=False, description="是否已读（单向：只能置为 True）")
    created_at: datetime = Field(description="创建时间")
    task_id: str | None = Field(default=None, description="关联的 Task ID")
    dedup_key: str | None = Field(default=None, description="幂等键")
