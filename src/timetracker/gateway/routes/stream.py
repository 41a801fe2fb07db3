"""SSE 推送路由

GET /api/stream/notifications: 先推送持久化的未读通知，再实时推送新通知。
GET /api/stream/tasks: 任务变更流，支持 Last-Event-ID（outbox seq）断线重连。
两者都带心跳保活；follow=false 时推送完历史即结束。
订阅队列溢出被丢弃后连接主动结束，由客户端重连补齐。
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse
from timetracker.core.models import ChangeEvent, Role, User
from timetracker.core.store import StoreGroup

from ..deps import get_actor, get_notification_hub, get_store_group
from ..services.notification_hub import NotificationHub
from .notifications import notification_item

log = structlog.get_logger()

router = APIRouter()


def _change_to_sse_data(change: ChangeEvent) -> dict:
    """将 task ChangeEvent 转换为 SSE data JSON"""
    return {
        "seq": change.seq,
        "task_id": change.row_id,
        "change_type": change.change_type.value,
        "ts": change.ts.isoformat(),
        "old_status": change.old_row.get("status") if change.old_row else None,
        "status": change.new_row.get("status"),
        "assigned_to": change.new_row.get("assigned_to"),
        "total_time_spent": change.new_row.get("total_time_spent"),
    }


def _is_visible(actor: User, change: ChangeEvent, project_ids: set[str]) -> bool:
    """变更对操作者是否可见（与任务列表的可见范围一致）"""
    if actor.role == Role.ADMIN:
        return True
    rows = [change.new_row] + ([change.old_row] if change.old_row else [])
    if actor.role == Role.LEADER:
        return any(row.get("project_id") in project_ids for row in rows)
    return any(row.get("assigned_to") == actor.id for row in rows)


def _parse_last_event_id(value: str | None) -> int:
    if not value:
        return 0
    try:
        return max(0, int(value))
    except ValueError:
        return 0


@router.get("/api/stream/notifications")
async def stream_notifications(
    request: Request,
    follow: bool = Query(default=True, description="推送完未读通知后是否继续监听"),
    actor: User = Depends(get_actor),
    hub: NotificationHub = Depends(get_notification_hub),
):
    """通知 SSE 端点

    1. 注册到 NotificationHub（先注册再读取未读，避免丢失）
    2. 推送未读通知（newest first）
    3. 实时推送新通知 + 心跳
    """
    heartbeat = request.app.state.gateway_config.heartbeat_interval_s

    async def event_generator():
        inbox = await hub.subscribe(actor.id)
        seeded = inbox.sorted_unread()
        try:
            sent: set[str] = set()
            for notification in seeded:
                sent.add(notification.id)
                yield {
                    "id": notification.id,
                    "event": "notification",
                    "data": json.dumps(
                        notification_item(notification).model_dump(), ensure_ascii=False
                    ),
                }
            if not follow:
                return

            while True:
                if inbox.closed and inbox.queue.empty():
                    # 已被 hub 丢弃：结束连接，客户端重连后从持久化未读重新初始化
                    log.warning("notification_stream_closed", user_id=actor.id)
                    return
                try:
                    notification = await asyncio.wait_for(inbox.queue.get(), timeout=heartbeat)
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                if notification.read:
                    yield {
                        "id": notification.id,
                        "event": "notification_read",
                        "data": json.dumps({"id": notification.id}),
                    }
                    continue
                if notification.id in sent:
                    continue
                sent.add(notification.id)
                yield {
                    "id": notification.id,
                    "event": "notification",
                    "data": json.dumps(
                        notification_item(notification).model_dump(), ensure_ascii=False
                    ),
                }
        finally:
            await hub.unsubscribe(inbox)

    return EventSourceResponse(event_generator())


@router.get("/api/stream/tasks")
async def stream_task_changes(
    request: Request,
    follow: bool = Query(default=True, description="回放完历史后是否继续监听"),
    actor: User = Depends(get_actor),
    store_group: StoreGroup = Depends(get_store_group),
):
    """任务变更 SSE 端点

    客户端收到 task_changed 后重新拉取任务列表；
    Last-Event-ID 为上次收到的 outbox seq，重连时从其后回放。
    """
    config = request.app.state.gateway_config
    last_event_id = request.headers.get("last-event-id")
    last_seq = _parse_last_event_id(last_event_id)
    project_ids: set[str] = set()
    if actor.role == Role.LEADER:
        project_ids = set(await store_group.project_store.list_project_ids_led_by(actor.id))

    async def event_generator():
        # 先订阅再回放，按 seq 去重
        queue = await store_group.change_feed.subscribe("tasks") if follow else None
        cursor = last_seq
        try:
            if last_event_id is not None:
                changes = await store_group.change_store.get_changes_after(
                    "tasks", last_seq, limit=config.replay_limit
                )
                for change in changes:
                    cursor = max(cursor, change.seq)
                    if _is_visible(actor, change, project_ids):
                        yield {
                            "id": str(change.seq),
                            "event": "task_changed",
                            "data": json.dumps(_change_to_sse_data(change)),
                        }
            if queue is None:
                return

            while True:
                if store_group.change_feed.is_closed(queue) and queue.empty():
                    # 已被 ChangeFeed 丢弃：结束连接，客户端带 Last-Event-ID 重连回放
                    log.warning("task_stream_closed", user_id=actor.id, last_seq=cursor)
                    return
                try:
                    change = await asyncio.wait_for(
                        queue.get(), timeout=config.heartbeat_interval_s
                    )
                except TimeoutError:
                    yield {"comment": "heartbeat"}
                    continue
                if change.seq <= cursor:
                    continue
                cursor = change.seq
                if _is_visible(actor, change, project_ids):
                    yield {
                        "id": str(change.seq),
                        "event": "task_changed",
                        "data": json.dumps(_change_to_sse_data(change)),
                    }
        finally:
            if queue is not None:
                await store_group.change_feed.unsubscribe("tasks", queue)

    return EventSourceResponse(event_generator())
