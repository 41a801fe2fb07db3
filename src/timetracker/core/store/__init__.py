"""TimeTracker Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .change_feed import ChangeFeed
from .change_store import SqliteChangeStore
from .directory_store import SqliteProjectStore, SqliteUserStore
from .notification_store import SqliteNotificationStore
from .snapshot_store import FileSnapshotStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import (
    TaskStatusConflictError,
    create_task_with_change,
    insert_notification_with_change,
    mark_notification_read_with_change,
    update_task_with_change,
)


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接和同一个 ChangeFeed"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        change_feed: ChangeFeed | None = None,
    ) -> None:
        self.conn = conn
        self.change_feed = change_feed or ChangeFeed()
        self.task_store = SqliteTaskStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.user_store = SqliteUserStore(conn)
        self.project_store = SqliteProjectStore(conn)
        self.change_store = SqliteChangeStore(conn)


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "ChangeFeed",
    "FileSnapshotStore",
    "SqliteTaskStore",
    "SqliteNotificationStore",
    "SqliteUserStore",
    "SqliteProjectStore",
    "SqliteChangeStore",
    "init_db",
    "TaskStatusConflictError",
    "create_task_with_change",
    "update_task_with_change",
    "insert_notification_with_change",
    "mark_notification_read_with_change",
]
