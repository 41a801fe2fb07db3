"""ChangeFeed -- 内存中行变更广播器

每个订阅者持有一个 asyncio.Queue，支持 subscribe/unsubscribe/publish。
事务提交后才 publish，订阅者看到的变更一定已经落盘。

后台消费者（通知派生、未读集合）以 bounded=False 订阅，队列不设上限、永不被丢弃；
SSE 连接使用有界队列，队列满时被丢弃并标记为 closed，由连接自行结束并让客户端重连回放。
"""

import asyncio
import weakref
from collections import defaultdict

import structlog

from ..config import CHANGE_FEED_QUEUE_MAXSIZE
from ..models.change import ChangeEvent

log = structlog.get_logger()


class ChangeFeed:
    """行变更广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = CHANGE_FEED_QUEUE_MAXSIZE) -> None:
        # table -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize
        # 因队列已满被丢弃的订阅
        self._closed: weakref.WeakSet[asyncio.Queue] = weakref.WeakSet()

    async def subscribe(self, table: str, bounded: bool = True) -> asyncio.Queue:
        """订阅指定表的变更

        Args:
            table: 表名（tasks / notifications）
            bounded: False 时队列不设上限，publish 永远不会丢弃该订阅

        Returns:
            asyncio.Queue 实例，新变更会被推送到此队列
        """
        maxsize = self._queue_maxsize if bounded else 0
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers[table].add(queue)
        return queue

    async def unsubscribe(self, table: str, queue: asyncio.Queue) -> None:
        """取消订阅

        Args:
            table: 表名
            queue: 之前订阅时返回的队列
        """
        self._subscribers[table].discard(queue)
        if not self._subscribers[table]:
            del self._subscribers[table]

    def is_closed(self, queue: asyncio.Queue) -> bool:
        """订阅是否已因队列满被丢弃（之后不会再收到任何变更）"""
        return queue in self._closed

    async def publish(self, change: ChangeEvent) -> None:
        """向指定表的所有订阅者广播变更

        Args:
            change: 已提交的行变更
        """
        dead_queues = []
        for queue in self._subscribers.get(change.table, set()):
            try:
                queue.put_nowait(change)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers[change.table].discard(q)
            self._closed.add(q)
            log.warning("change_feed_subscriber_dropped", table=change.table, seq=change.seq)
        if change.table in self._subscribers and not self._subscribers[change.table]:
            del self._subscribers[change.table]

    def subscriber_count(self, table: str) -> int:
        return len(self._subscribers.get(table, ()))
