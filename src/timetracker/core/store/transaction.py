"""行写入 + changes outbox 原子事务封装

在同一 SQLite 事务内原子提交行变更和 outbox 记录，提交成功后再经 ChangeFeed 广播。
任何失败都回滚，调用方观察到的要么是完整效果，要么毫无变化。
"""

import asyncio
import weakref
from datetime import datetime
from typing import Any

import aiosqlite

from ..exceptions import (
    DuplicateNotificationError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceFailureError,
    TimeTrackerError,
)
from ..models.change import ChangeEvent
from ..models.enums import ChangeType, TaskStatus
from ..models.notification import Notification
from ..models.task import Task
from .change_feed import ChangeFeed
from .change_store import SqliteChangeStore
from .notification_store import SqliteNotificationStore
from .task_store import SqliteTaskStore


class TaskStatusConflictError(InvalidTransitionError):
    """条件写失败：任务状态已被并发修改"""

    def __init__(self, task_id: str, expected: TaskStatus, actual: TaskStatus | None) -> None:
        actual_text = actual.value if actual is not None else "unknown"
        super().__init__(
            f"Task {task_id} changed concurrently "
            f"(expected {expected.value}, found {actual_text})"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual


# 同一连接上的写事务串行执行（共享一个 SQLite 事务上下文）
_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def _write_lock(conn: aiosqlite.Connection) -> asyncio.Lock:
    lock = _write_locks.get(conn)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[conn] = lock
    return lock


def _is_dedup_conflict(error: Exception) -> bool:
    if not isinstance(error, aiosqlite.IntegrityError):
        return False
    text = str(error)
    return "idx_notifications_dedup_key" in text or "notifications.dedup_key" in text


async def _rollback_and_raise(
    conn: aiosqlite.Connection,
    operation: str,
    error: Exception,
) -> None:
    await conn.rollback()
    if isinstance(error, TimeTrackerError):
        raise error
    raise PersistenceFailureError(operation, error) from error


async def create_task_with_change(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    change_store: SqliteChangeStore,
    feed: ChangeFeed | None,
    task: Task,
) -> ChangeEvent:
    """单事务写入 task + INSERT change，提交后广播"""
    async with _write_lock(conn):
        try:
            await task_store.create_task(task)
            change = await change_store.append_change(
                ChangeEvent(
                    table="tasks",
                    change_type=ChangeType.INSERT,
                    row_id=task.id,
                    new_row=task.model_dump(mode="json"),
                    ts=task.created_at,
                )
            )
            await conn.commit()
        except Exception as e:
            await _rollback_and_raise(conn, "create_task", e)

    if feed is not None:
        await feed.publish(change)
    return change


async def update_task_with_change(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    change_store: SqliteChangeStore,
    feed: ChangeFeed | None,
    task_id: str,
    updates: dict[str, Any],
    ts: datetime,
    expected_status: TaskStatus | None = None,
) -> tuple[Task, Task]:
    """在同一事务内原子提交 Task 更新和 UPDATE change

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: TaskStore 实例
        change_store: ChangeStore 实例
        feed: 提交后广播的 ChangeFeed，可为空
        task_id: 任务 ID
        updates: 需要更新的字段
        ts: 本次更新时间
        expected_status: 条件写：当前状态必须等于该值

    Returns:
        (old_task, new_task)

    Raises:
        NotFoundError: 任务不存在
        TaskStatusConflictError: 状态与预期不符或并发修改
        PersistenceFailureError: 写入失败，事务已回滚
    """
    async with _write_lock(conn):
        try:
            old = await task_store.get_task(task_id)
            if old is None:
                raise NotFoundError("Task", task_id)
            if expected_status is not None and old.status != expected_status:
                raise TaskStatusConflictError(task_id, expected_status, old.status)

            new = Task.model_validate(
                {
                    **old.model_dump(),
                    **updates,
                    "updated_at": ts,
                    "version": old.version + 1,
                }
            )
            if not await task_store.update_task(new, expected_version=old.version):
                raise TaskStatusConflictError(task_id, expected_status or old.status, None)

            change = await change_store.append_change(
                ChangeEvent(
                    table="tasks",
                    change_type=ChangeType.UPDATE,
                    row_id=task_id,
                    old_row=old.model_dump(mode="json"),
                    new_row=new.model_dump(mode="json"),
                    ts=ts,
                )
            )
            await conn.commit()
        except Exception as e:
            await _rollback_and_raise(conn, "update_task", e)

    if feed is not None:
        await feed.publish(change)
    return old, new


async def insert_notification_with_change(
    conn: aiosqlite.Connection,
    notification_store: SqliteNotificationStore,
    change_store: SqliteChangeStore,
    feed: ChangeFeed | None,
    notification: Notification,
) -> ChangeEvent:
    """单事务写入通知 + INSERT change

    Raises:
        DuplicateNotificationError: dedup_key 已存在
        PersistenceFailureError: 写入失败，事务已回滚
    """
    async with _write_lock(conn):
        try:
            await notification_store.insert_notification(notification)
            change = await change_store.append_change(
                ChangeEvent(
                    table="notifications",
                    change_type=ChangeType.INSERT,
                    row_id=notification.id,
                    new_row=notification.model_dump(mode="json"),
                    ts=notification.created_at,
                )
            )
            await conn.commit()
        except Exception as e:
            if _is_dedup_conflict(e) and notification.dedup_key:
                await conn.rollback()
                raise DuplicateNotificationError(notification.dedup_key) from e
            await _rollback_and_raise(conn, "insert_notification", e)

    if feed is not None:
        await feed.publish(change)
    return change


async def mark_notification_read_with_change(
    conn: aiosqlite.Connection,
    notification_store: SqliteNotificationStore,
    change_store: SqliteChangeStore,
    feed: ChangeFeed | None,
    notification_id: str,
    ts: datetime,
) -> Notification:
    """单事务将通知置为已读 + UPDATE change

    已读的通知不产生新的 change（单向、幂等）。

    Raises:
        NotFoundError: 通知不存在
        PersistenceFailureError: 写入失败，事务已回滚
    """
    change: ChangeEvent | None = None
    async with _write_lock(conn):
        try:
            old = await notification_store.get_notification(notification_id)
            if old is None:
                raise NotFoundError("Notification", notification_id)
            if old.read:
                await conn.rollback()
                return old

            await notification_store.mark_read(notification_id)
            new = old.model_copy(update={"read": True})
            change = await change_store.append_change(
                ChangeEvent(
                    table="notifications",
                    change_type=ChangeType.UPDATE,
                    row_id=notification_id,
                    old_row=old.model_dump(mode="json"),
                    new_row=new.model_dump(mode="json"),
                    ts=ts,
                )
            )
            await conn.commit()
        except Exception as e:
            await _rollback_and_raise(conn, "mark_notification_read", e)

    if feed is not None and change is not None:
        await feed.publish(change)
    return new
