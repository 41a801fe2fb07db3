"""NotificationReconciler -- 从 task 变更流派生通知

订阅 ChangeFeed 的 tasks 表，按 notification_rules 为 assignee 和所有 admin 派生通知。
与发起变更的请求解耦：请求返回后才由后台消费者处理。
变更可能重复投递，dedup_key 预检 + 唯一索引保证每个 (规则, 事件, 接收者) 最多一条。
"""

import asyncio
import contextlib
from datetime import UTC, datetime

import aiosqlite
import structlog
from timetracker.core.config import CHANGE_REPLAY_LIMIT
from timetracker.core.exceptions import DuplicateNotificationError, TimeTrackerError
from timetracker.core.models import (
    ChangeEvent,
    ChangeType,
    Notification,
    Role,
    Task,
    User,
)
from timetracker.core.notification_rules import (
    UNKNOWN_ASSIGNEE_NAME,
    NotificationDraft,
    derive_notifications,
)
from timetracker.core.store import StoreGroup, insert_notification_with_change
from ulid import ULID

log = structlog.get_logger()


async def persist_draft(
    store_group: StoreGroup,
    draft: NotificationDraft,
) -> Notification | None:
    """写入一条通知草稿

    Returns:
        新写入的 Notification；dedup_key 已存在时返回 None
    """
    existing = await store_group.notification_store.check_dedup_key(draft.dedup_key)
    if existing:
        log.debug(
            "notification_duplicate_skipped",
            rule=draft.rule.value,
            task_id=draft.task_id,
            user_id=draft.user_id,
        )
        return None

    notification = Notification(
        id=str(ULID()),
        user_id=draft.user_id,
        message=draft.message,
        type=draft.type,
        read=False,
        created_at=datetime.now(UTC),
        task_id=draft.task_id,
        dedup_key=draft.dedup_key,
    )
    try:
        await insert_notification_with_change(
            store_group.conn,
            store_group.notification_store,
            store_group.change_store,
            store_group.change_feed,
            notification,
        )
    except DuplicateNotificationError:
        # 预检与写入之间被并发写入
        log.debug(
            "notification_duplicate_skipped",
            rule=draft.rule.value,
            task_id=draft.task_id,
            user_id=draft.user_id,
        )
        return None

    log.info(
        "notification_created",
        rule=draft.rule.value,
        task_id=draft.task_id,
        user_id=draft.user_id,
    )
    return notification


class NotificationReconciler:
    """通知派生引擎"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group
        self._queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def handle_change(self, change: ChangeEvent) -> list[Notification]:
        """处理一条 task 变更

        Returns:
            本次新写入的通知（重复投递时为空）
        """
        if change.table != "tasks" or change.change_type != ChangeType.UPDATE:
            return []
        if change.old_row is None:
            return []

        old = Task.model_validate(change.old_row)
        new = Task.model_validate(change.new_row)

        audience, assignee_name = await self._resolve_audience(new)
        drafts = derive_notifications(old, new, audience, assignee_name)

        created: list[Notification] = []
        for draft in drafts:
            notification = await persist_draft(self._stores, draft)
            if notification is not None:
                created.append(notification)
        return created

    async def _resolve_audience(self, task: Task) -> tuple[list[User], str]:
        """接收者 = assignee + 所有 admin"""
        audience: list[User] = []
        assignee_name = UNKNOWN_ASSIGNEE_NAME
        if task.assigned_to:
            assignee = await self._stores.user_store.get_user(task.assigned_to)
            if assignee is not None:
                audience.append(assignee)
                assignee_name = assignee.username
        audience.extend(await self._stores.user_store.list_users(Role.ADMIN))
        return audience, assignee_name

    async def replay_recent(self, limit: int = CHANGE_REPLAY_LIMIT) -> int:
        """从 outbox 回放最近的 task 变更（启动时补齐进程退出前未处理的变更）

        Returns:
            回放的变更条数
        """
        latest = await self._stores.change_store.get_latest_seq()
        changes = await self._stores.change_store.get_changes_after(
            "tasks", max(0, latest - limit), limit=limit
        )
        for change in changes:
            await self._handle_safely(change)
        await log.ainfo("reconciler_replay_completed", change_count=len(changes))
        return len(changes)

    async def start(self) -> None:
        """订阅 ChangeFeed 并启动后台消费者"""
        if self.running:
            return
        self._queue = await self._stores.change_feed.subscribe("tasks", bounded=False)
        self._consumer = asyncio.create_task(self._consume(self._queue))

    async def stop(self) -> None:
        """停止后台消费者并取消订阅"""
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        if self._queue is not None:
            await self._stores.change_feed.unsubscribe("tasks", self._queue)
            self._queue = None

    async def drain(self) -> None:
        """等待队列中已有的变更处理完毕"""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            change = await queue.get()
            try:
                await self._handle_safely(change)
            finally:
                queue.task_done()

    async def _handle_safely(self, change: ChangeEvent) -> None:
        try:
            await self.handle_change(change)
        except (TimeTrackerError, aiosqlite.Error) as e:
            # 单条变更失败不终止消费者；重放时由 dedup 保证不重复
            log.error(
                "reconcile_change_failed",
                seq=change.seq,
                row_id=change.row_id,
                error_type=type(e).__name__,
                recoverable=True,
            )
