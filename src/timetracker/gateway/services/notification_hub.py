"""NotificationHub -- 每个在线用户的未读通知集合

订阅时先注册再从持久化的未读通知初始化，之后由 notifications 表的变更事件增量更新。
变更可能重复或乱序投递：INSERT 按 id 幂等合并，已读是单向的，
已在本地标记为已读的通知不会因迟到的 INSERT 重新出现。
"""

import asyncio
import contextlib
from collections import defaultdict
from datetime import UTC, datetime

import structlog
from timetracker.core.config import CHANGE_FEED_QUEUE_MAXSIZE
from timetracker.core.exceptions import NotFoundError
from timetracker.core.models import ChangeEvent, ChangeType, Notification
from timetracker.core.store import StoreGroup, mark_notification_read_with_change

log = structlog.get_logger()


class ViewerInbox:
    """单个订阅者的未读集合 + 推送队列"""

    def __init__(self, user_id: str, queue_maxsize: int = CHANGE_FEED_QUEUE_MAXSIZE) -> None:
        self.user_id = user_id
        self.unread: dict[str, Notification] = {}
        self.read_ids: set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        # 推送队列溢出后被 hub 丢弃，不会再收到新通知
        self.closed = False

    def merge(self, notification: Notification) -> bool:
        """合并一条通知

        Returns:
            True 表示未读集合发生了变化
        """
        if notification.read or notification.id in self.read_ids:
            self.read_ids.add(notification.id)
            return self.unread.pop(notification.id, None) is not None
        if notification.id in self.unread:
            return False
        self.unread[notification.id] = notification
        return True

    def sorted_unread(self) -> list[Notification]:
        """按 created_at 倒序"""
        return sorted(self.unread.values(), key=lambda n: (n.created_at, n.id), reverse=True)


class NotificationHub:
    """通知未读集合广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(
        self,
        store_group: StoreGroup,
        queue_maxsize: int = CHANGE_FEED_QUEUE_MAXSIZE,
    ) -> None:
        self._stores = store_group
        self._queue_maxsize = queue_maxsize
        # user_id -> set of ViewerInbox
        self._inboxes: dict[str, set[ViewerInbox]] = defaultdict(set)
        self._feed_queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None

    async def subscribe(self, user_id: str) -> ViewerInbox:
        """订阅用户的通知流

        先注册再读取持久化的未读通知，订阅期间到达的变更不会丢失。
        """
        inbox = ViewerInbox(user_id, self._queue_maxsize)
        self._inboxes[user_id].add(inbox)
        for notification in await self._stores.notification_store.list_unread(user_id):
            inbox.merge(notification)
        return inbox

    async def unsubscribe(self, inbox: ViewerInbox) -> None:
        self._inboxes[inbox.user_id].discard(inbox)
        if not self._inboxes[inbox.user_id]:
            del self._inboxes[inbox.user_id]

    def subscriber_count(self, user_id: str) -> int:
        return len(self._inboxes.get(user_id, set()))

    async def apply_change(self, change: ChangeEvent) -> None:
        """将一条 notifications 变更应用到对应用户的所有订阅者"""
        if change.table != "notifications":
            return
        if change.change_type not in (ChangeType.INSERT, ChangeType.UPDATE):
            return

        notification = Notification.model_validate(change.new_row)
        dead: list[ViewerInbox] = []
        for inbox in self._inboxes.get(notification.user_id, set()):
            if not inbox.merge(notification):
                continue
            try:
                inbox.queue.put_nowait(notification)
            except asyncio.QueueFull:
                dead.append(inbox)

        # 清理已满的队列
        for inbox in dead:
            inbox.closed = True
            log.warning("notification_subscriber_dropped", user_id=inbox.user_id)
            await self.unsubscribe(inbox)

    async def list_unread(self, user_id: str) -> list[Notification]:
        """持久化的未读通知（newest first）"""
        return await self._stores.notification_store.list_unread(user_id)

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        """标记已读（单向、幂等）

        Raises:
            NotFoundError: 通知不存在或不属于该用户
        """
        notification = await self._stores.notification_store.get_notification(
            notification_id
        )
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification", notification_id)

        updated = await mark_notification_read_with_change(
            self._stores.conn,
            self._stores.notification_store,
            self._stores.change_store,
            self._stores.change_feed,
            notification_id,
            datetime.now(UTC),
        )
        # 本地集合立即更新，不等待变更事件
        for inbox in self._inboxes.get(user_id, set()):
            inbox.merge(updated)
        return updated

    async def start(self) -> None:
        """订阅 notifications 变更流"""
        if self._consumer is not None:
            return
        self._feed_queue = await self._stores.change_feed.subscribe(
            "notifications", bounded=False
        )
        self._consumer = asyncio.create_task(self._consume(self._feed_queue))

    async def stop(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        if self._feed_queue is not None:
            await self._stores.change_feed.unsubscribe("notifications", self._feed_queue)
            self._feed_queue = None

    async def drain(self) -> None:
        """等待已入队的变更应用完毕"""
        if self._feed_queue is not None:
            await self._feed_queue.join()

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            change = await queue.get()
            try:
                await self.apply_change(change)
            finally:
                queue.task_done()
