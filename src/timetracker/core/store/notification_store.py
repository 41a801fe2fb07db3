"""NotificationStore SQLite 实现

read 只能从 0 置为 1，不提供反向操作。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import NotificationType
from ..models.notification import Notification

_COLUMNS = "id, user_id, message, type, read, created_at, task_id, dedup_key"


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_notification(self, notification: Notification) -> None:
        """写入通知

        注意：此方法不自动提交事务，需由调用方管理事务。
        dedup_key 冲突时抛出 aiosqlite.IntegrityError。
        """
        await self._conn.execute(
            f"""
            INSERT INTO notifications ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.id,
                notification.user_id,
                notification.message,
                notification.type.value,
                int(notification.read),
                notification.created_at.isoformat(),
                notification.task_id,
                notification.dedup_key,
            ),
        )

    async def get_notification(self, notification_id: str) -> Notification | None:
        """根据 id 查询通知"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM notifications WHERE id = ?",
            (notification_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    async def list_unread(self, user_id: str) -> list[Notification]:
        """查询用户的未读通知，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM notifications
            WHERE user_id = ? AND read = 0
            ORDER BY created_at DESC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def list_for_user(self, user_id: str) -> list[Notification]:
        """查询用户的全部通知，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM notifications
            WHERE user_id = ?
            ORDER BY created_at DESC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def mark_read(self, notification_id: str) -> bool:
        """标记已读（单向）

        Returns:
            True 如果本次调用把未读改为已读；已读或不存在返回 False
        """
        cursor = await self._conn.execute(
            "UPDATE notifications SET read = 1 WHERE id = ? AND read = 0",
            (notification_id,),
        )
        return cursor.rowcount == 1

    async def check_dedup_key(self, key: str) -> str | None:
        """检查幂等键是否已存在

        Returns:
            关联的 notification id 如果存在，否则 None
        """
        cursor = await self._conn.execute(
            "SELECT id FROM notifications WHERE dedup_key = ? LIMIT 1",
            (key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        """将数据库行转换为 Notification 模型"""
        return Notification(
            id=row[0],
            user_id=row[1],
            message=row[2],
            type=NotificationType(row[3]),
            read=bool(row[4]),
            created_at=datetime.fromisoformat(row[5]),
            task_id=row[6],
            dedup_key=row[7],
        )
