"""通知路由

GET  /api/notifications: 当前用户的通知（默认只返回未读，newest first）。
POST /api/notifications/{notification_id}/read: 标记已读（单向、幂等）。
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from timetracker.core.models import Notification, User
from timetracker.core.store import StoreGroup

from ..deps import get_actor, get_notification_hub, get_store_group
from ..services.notification_hub import NotificationHub

router = APIRouter()


class NotificationItem(BaseModel):
    id: str
    message: str
    type: str
    read: bool
    created_at: str
    task_id: str | None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationItem]
    unread_count: int


def notification_item(notification: Notification) -> NotificationItem:
    return NotificationItem(
        id=notification.id,
        message=notification.message,
        type=notification.type.value,
        read=notification.read,
        created_at=notification.created_at.isoformat(),
        task_id=notification.task_id,
    )


@router.get("/api/notifications", response_model=NotificationListResponse)
async def list_notifications(
    include_read: bool = Query(default=False, description="是否包含已读通知"),
    actor: User = Depends(get_actor),
    hub: NotificationHub = Depends(get_notification_hub),
    store_group: StoreGroup = Depends(get_store_group),
):
    unread = await hub.list_unread(actor.id)
    if include_read:
        items = await store_group.notification_store.list_for_user(actor.id)
    else:
        items = unread
    return NotificationListResponse(
        notifications=[notification_item(n) for n in items],
        unread_count=len(unread),
    )


@router.post("/api/notifications/{notification_id}/read", response_model=NotificationItem)
async def mark_notification_read(
    notification_id: str,
    actor: User = Depends(get_actor),
    hub: NotificationHub = Depends(get_notification_hub),
):
    """只能标记自己的通知；重复调用返回相同结果"""
    return notification_item(await hub.mark_read(actor.id, notification_id))
